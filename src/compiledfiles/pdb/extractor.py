"""
PDB source file extraction.

Resolves MSF -> PDB info stream -> /names -> DBI module list, then for each
module reads its file references (C13 file checksums, falling back to the
DBI source-info table) and resolves them to path strings.
"""

import logging
from typing import Optional

from compiledfiles.exceptions import CorruptDataError, DebugFormatError, UnexpectedEofError
from compiledfiles.models import ExtractionWarning, FileChecksum, SourceFile, UnitResult
from compiledfiles.pdb.dbi import DBI_STREAM, DbiStream, PdbModule
from compiledfiles.pdb.info import PDB_INFO_STREAM, PdbInfo, parse_pdb_info
from compiledfiles.pdb.module_stream import read_file_checksums
from compiledfiles.pdb.msf import MsfFile
from compiledfiles.pdb.names import NAMES_STREAM_NAME, StringTable
from compiledfiles.utils.workers import run_indexed

logger = logging.getLogger(__name__)


class PdbExtractor:
    """Extracts per-module source file lists from a PDB (MSF 7.00) file."""

    def __init__(self, data):
        self.data = data
        self.msf: Optional[MsfFile] = None
        self.info: Optional[PdbInfo] = None
        self.names: Optional[StringTable] = None
        self.dbi: Optional[DbiStream] = None

    def extract(self, workers: Optional[int] = None) -> tuple[list[UnitResult], list[ExtractionWarning]]:
        """Run the extraction.

        Args:
            workers: Thread count for per-module decoding (None = inline)

        Returns:
            (module results in DBI order, container-level warnings)

        Raises:
            CorruptDataError: MSF container, info stream, /names or DBI unusable
        """
        self.msf = MsfFile(self.data)
        self.info = self._load("PDB info stream", lambda: parse_pdb_info(self.msf.read_stream(PDB_INFO_STREAM)))

        names_index = self.info.named_streams.get(NAMES_STREAM_NAME)
        if names_index is None:
            raise CorruptDataError("PDB has no /names stream")
        self.names = self._load("/names stream", lambda: StringTable(self.msf.read_stream(names_index)))
        self.dbi = self._load("DBI stream", lambda: DbiStream(self.msf.read_stream(DBI_STREAM)))

        warnings = []
        for problem in (self.dbi.module_problem, self.dbi.source_info_problem):
            if problem:
                logger.warning(problem)
                warnings.append(ExtractionWarning(None, problem))

        logger.debug(
            f"PDB {self.info.guid_string} age {self.info.age} (info version {self.info.version}, "
            f"DBI version {self.dbi.header.version} age {self.dbi.header.age}): "
            f"{len(self.dbi.modules)} modules"
        )
        return run_indexed(self._parse_module, self.dbi.modules, workers), warnings

    @staticmethod
    def _load(what: str, loader):
        try:
            return loader()
        except (DebugFormatError, UnexpectedEofError) as e:
            raise CorruptDataError(f"{what}: {e}") from e

    def _parse_module(self, module: PdbModule) -> UnitResult:
        result = UnitResult(module.index)
        try:
            references = self._module_references(module, result)
        except (DebugFormatError, UnexpectedEofError) as e:
            result.warn(f"module {module.display_name} skipped: {e}")
            logger.warning(f"Module {module.index} ({module.display_name}): {e}")
            return result

        for raw_name, checksum in references:
            try:
                path = raw_name.decode('utf-8')
            except UnicodeDecodeError:
                result.warn(f"source name {raw_name!r} in module {module.display_name} is not valid UTF-8")
                continue
            result.files.append(SourceFile(path=path, checksum=checksum))
        return result

    def _module_references(self, module: PdbModule,
                           result: UnitResult) -> list[tuple[bytes, Optional[FileChecksum]]]:
        """Raw source names for a module, in record order."""
        if module.has_stream and module.c13_byte_size:
            entries = read_file_checksums(self.msf.read_stream(module.stream_index), module)
            if entries is not None:
                references = []
                for entry in entries:
                    try:
                        references.append((self.names.get(entry.name_offset), entry.checksum))
                    except DebugFormatError as e:
                        result.warn(f"module {module.display_name}: {e}")
                return references

        fallback = self.dbi.source_names_for(module.index)
        if fallback is None:
            logger.debug(f"Module {module.index} ({module.display_name}) has no source file list")
            return []
        return [(name, None) for name in fallback]
