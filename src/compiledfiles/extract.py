"""
Extraction entry points.

    extract(data)       -> ExtractionResult for an in-memory ELF or PDB image
    extract_path(path)  -> same, reading the file once

The format is chosen from the leading magic bytes; the matching extractor
produces one file list per compilation unit (ELF) or module (PDB), which
are merged in discovery order into a duplicate-free result.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from compiledfiles.dwarf.extractor import DwarfExtractor
from compiledfiles.exceptions import EmptyInputError, ExtractionIoError
from compiledfiles.merge import ResultSet, merge_unit_results
from compiledfiles.models import ExtractionWarning, FormatKind, SourceFile
from compiledfiles.pdb.extractor import PdbExtractor
from compiledfiles.sniffer import sniff_format

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    """Outcome of a successful extraction."""

    format: FormatKind
    files: ResultSet
    warnings: list[ExtractionWarning] = field(default_factory=list)
    unit_count: int = 0

    @property
    def paths(self) -> list[str]:
        return self.files.paths

    @property
    def source_files(self) -> list[SourceFile]:
        return self.files.files


def extract(data, *, workers: Optional[int] = None,
            include_pseudo_files: bool = False) -> ExtractionResult:
    """List the source files recorded in a binary's debug information.

    Args:
        data: Complete contents of an ELF file or PDB (any buffer-protocol
            object; it is read in place, not copied)
        workers: Thread count for per-unit/per-module parsing (None = inline)
        include_pseudo_files: Keep compiler pseudo files such as "<built-in>"

    Returns:
        ExtractionResult with paths in first-discovery order and any
        per-unit warnings

    Raises:
        EmptyInputError: data is empty
        UnsupportedFormatError: data is neither ELF nor PDB
        CorruptDataError: container-level structures are damaged
        MissingDebugInfoError: ELF file has no .debug_info or .debug_line section
    """
    view = memoryview(data)
    if view.ndim != 1 or view.itemsize != 1:
        view = view.cast('B')
    if not view:
        raise EmptyInputError()

    kind = sniff_format(view)
    logger.debug(f"Detected {kind.value} input ({len(view)} bytes)")

    if kind is FormatKind.ELF:
        unit_results, container_warnings = DwarfExtractor(view, include_pseudo_files).extract(workers)
    else:
        unit_results, container_warnings = PdbExtractor(view).extract(workers)

    files, unit_warnings = merge_unit_results(unit_results)
    result = ExtractionResult(
        format=kind,
        files=files,
        warnings=container_warnings + unit_warnings,
        unit_count=len(unit_results),
    )
    logger.info(
        f"Extracted {len(files)} source files from {len(unit_results)} "
        f"{'units' if kind is FormatKind.ELF else 'modules'} ({len(result.warnings)} warnings)"
    )
    return result


def extract_path(path, **options) -> ExtractionResult:
    """Read a file and run extract() on its contents.

    Raises:
        ExtractionIoError: The file could not be read
    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise ExtractionIoError(str(path), e.strerror or str(e)) from e
    return extract(data, **options)
