"""
Pydantic models for the JSON report printed by the command-line tool.
"""

from typing import Optional
from pydantic import BaseModel

from compiledfiles.extract import ExtractionResult


class ChecksumModel(BaseModel):
    """Source file checksum."""
    kind: str
    digest: str


class SourceFileModel(BaseModel):
    """One extracted source file."""
    path: str
    size: Optional[int] = None
    timestamp: Optional[int] = None
    checksum: Optional[ChecksumModel] = None


class WarningModel(BaseModel):
    """Non-fatal problem met during extraction."""
    index: Optional[int] = None
    message: str


class ExtractionReport(BaseModel):
    """Full extraction report."""
    binary: str
    format: str
    unit_count: int
    files: list[SourceFileModel]
    warnings: list[WarningModel] = []

    @classmethod
    def from_result(cls, binary: str, result: ExtractionResult) -> "ExtractionReport":
        files = []
        for source_file in result.source_files:
            checksum = None
            if source_file.checksum:
                checksum = ChecksumModel(kind=source_file.checksum.kind, digest=source_file.checksum.hex)
            files.append(SourceFileModel(
                path=source_file.path,
                size=source_file.size,
                timestamp=source_file.timestamp,
                checksum=checksum,
            ))
        return cls(
            binary=binary,
            format=result.format.value,
            unit_count=result.unit_count,
            files=files,
            warnings=[WarningModel(index=w.index, message=w.message) for w in result.warnings],
        )
