"""
Records shared by the ELF/DWARF and PDB extractors.

Everything here is created during one extraction call and is not mutated
after construction.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class FormatKind(Enum):
    """Container formats the sniffer can dispatch to."""

    ELF = "elf"
    PDB = "pdb"


@dataclass(frozen=True)
class FileChecksum:
    """Checksum of a source file's content as recorded by the compiler."""

    kind: str  # 'md5', 'sha1' or 'sha256'
    digest: bytes

    @property
    def hex(self) -> str:
        return self.digest.hex()


@dataclass(frozen=True)
class SourceFileEntry:
    """One row of a unit's file table, before path resolution.

    name and directory_index are None when the recorded value is unusable.
    """

    name: Optional[bytes]
    directory_index: Optional[int] = 0
    timestamp: Optional[int] = None
    size: Optional[int] = None
    checksum: Optional[FileChecksum] = None


@dataclass(frozen=True)
class SourceFile:
    """A resolved source file. Only the path takes part in deduplication."""

    path: str
    size: Optional[int] = None
    timestamp: Optional[int] = None
    checksum: Optional[FileChecksum] = None

    def __str__(self):
        return self.path


@dataclass(frozen=True)
class ExtractionWarning:
    """Non-fatal problem tied to a unit/module index (None for container-level)."""

    index: Optional[int]
    message: str

    def __str__(self):
        where = "container" if self.index is None else f"unit {self.index}"
        return f"[{where}] {self.message}"


@dataclass
class UnitResult:
    """Output of parsing one compilation unit or module.

    Each worker owns its UnitResult exclusively; the merge stage consumes
    them ordered by index.
    """

    index: int
    files: list[SourceFile] = field(default_factory=list)
    warnings: list[ExtractionWarning] = field(default_factory=list)

    def warn(self, message: str):
        self.warnings.append(ExtractionWarning(self.index, message))
