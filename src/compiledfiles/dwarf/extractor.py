"""
ELF/DWARF source file extraction.

Walks every compilation unit pyelftools finds in .debug_info, reads the file
table of the line program the unit points at, and resolves the entries to
path strings.

pyelftools reads all sections through shared streams, so the file tables are
read unit by unit on the calling thread; only path resolution is spread over
worker threads.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from elftools.common.exceptions import DWARFError
from elftools.common.utils import struct_parse
from elftools.dwarf.compileunit import CompileUnit
from elftools.dwarf.dwarfinfo import DWARFInfo

from compiledfiles.dwarf.constants import (
    INDIRECT_STRING_FORMS,
    PSEUDO_FILE_PREFIX,
    SKIPPED_UNIT_TYPES,
    STR_OFFSETS_HEADER_SIZE,
    SUPPORTED_LINE_VERSIONS,
)
from compiledfiles.dwarf.loader import load_dwarf_info
from compiledfiles.exceptions import describe_error
from compiledfiles.models import ExtractionWarning, FileChecksum, SourceFile, SourceFileEntry, UnitResult
from compiledfiles.utils.paths import is_absolute, resolve_source_path
from compiledfiles.utils.workers import run_indexed

logger = logging.getLogger(__name__)


@dataclass
class UnitFileTable:
    """File table of one unit, as read from its line program header.

    directories is indexed by the entries' directory_index: for DWARF 2-4
    it starts with b'' standing for the compilation directory.
    """

    result: UnitResult
    comp_dir: Optional[str] = ''  # None: recorded but unreadable
    directories: tuple = ()
    entries: list[SourceFileEntry] = field(default_factory=list)


def _hex(value: int) -> str:
    if value.bit_length() > 64:
        return "(wider than 64 bits)"
    return f"0x{value:x}"


def _int_or_none(value) -> Optional[int]:
    return value if isinstance(value, int) and value else None


def _directory_index(value) -> Optional[int]:
    # DWARF 5 entries without DW_LNCT_directory_index belong to directory 0
    if value is None:
        return 0
    return value if isinstance(value, int) else None


def _top_die(cu: CompileUnit):
    try:
        return cu.get_top_DIE()
    except DWARFError:
        # The DIE is cached before its strx/addrx attributes are translated;
        # a missing DW_AT_*_base leaves them as raw indices.
        if not cu.has_top_DIE():
            raise
        return cu.get_top_DIE()


def _indirect_string(dwarf_info: DWARFInfo, cu: CompileUnit, top_die, index: int) -> Optional[bytes]:
    """Resolve a string index through .debug_str_offsets.

    Without DW_AT_str_offsets_base the first contribution is used, so the
    base is the size of its header.
    """
    if dwarf_info.debug_str_offsets_sec is None or dwarf_info.debug_str_sec is None:
        return None
    dwarf_format = cu.structs.dwarf_format
    base = top_die.attributes.get('DW_AT_str_offsets_base')
    base_offset = base.value if base is not None else STR_OFFSETS_HEADER_SIZE[dwarf_format]
    entry_size = 4 if dwarf_format == 32 else 8
    str_offset = struct_parse(
        cu.structs.Dwarf_offset(''),
        dwarf_info.debug_str_offsets_sec.stream,
        base_offset + index * entry_size,
    )
    return dwarf_info.get_string_from_table(str_offset)


class DwarfExtractor:
    """Extracts per-unit source file lists from an ELF image with DWARF.

    Every unit is decoded independently into its own UnitResult; a malformed
    unit only produces a warning for that unit.
    """

    def __init__(self, data, include_pseudo_files: bool = False):
        self.data = data
        self.include_pseudo_files = include_pseudo_files

    def extract(self, workers: Optional[int] = None) -> tuple[list[UnitResult], list[ExtractionWarning]]:
        """Run the extraction.

        Args:
            workers: Thread count for path resolution (None = inline)

        Returns:
            (unit results in discovery order, container-level warnings)

        Raises:
            CorruptDataError: ELF container is damaged
            MissingDebugInfoError: No .debug_info or .debug_line section
        """
        dwarf_info, warnings = load_dwarf_info(memoryview(self.data))

        tables = []
        units = dwarf_info.iter_CUs()
        while True:
            try:
                cu = next(units)
            except StopIteration:
                break
            except Exception as e:
                # A unit header that does not parse leaves no way to find the next one
                message = f".debug_info scan stopped after {len(tables)} units: {describe_error(e)}"
                logger.warning(message)
                warnings.append(ExtractionWarning(None, message))
                break
            tables.append(self._read_unit(dwarf_info, cu, len(tables)))

        logger.debug(f"Found {len(tables)} units in .debug_info")
        return run_indexed(self._resolve_entries, tables, workers), warnings

    def _read_unit(self, dwarf_info: DWARFInfo, cu: CompileUnit, index: int) -> UnitFileTable:
        table = UnitFileTable(UnitResult(index))
        try:
            self._read_file_table(dwarf_info, cu, table)
        except Exception as e:
            table.entries = []
            table.result.warn(f"compilation unit at 0x{cu.cu_offset:x} skipped: {describe_error(e)}")
            logger.warning(f"Unit {index}: {describe_error(e)}")
        return table

    def _read_file_table(self, dwarf_info: DWARFInfo, cu: CompileUnit, table: UnitFileTable):
        result = table.result
        unit_type = cu.header.get('unit_type')
        if unit_type in SKIPPED_UNIT_TYPES:
            logger.debug(f"Unit {result.index} is a {SKIPPED_UNIT_TYPES[unit_type]}; skipped")
            return

        top_die = _top_die(cu)
        table.comp_dir = self._read_comp_dir(dwarf_info, cu, top_die, result)

        stmt_list = top_die.attributes.get('DW_AT_stmt_list')
        if stmt_list is None:
            return
        where = _hex(stmt_list.value) if isinstance(stmt_list.value, int) else '?'
        try:
            lineprog = dwarf_info.line_program_for_CU(cu)
        except Exception as e:
            result.warn(f"line table at {where} skipped: {describe_error(e)}")
            logger.warning(f"Unit {result.index}: line table at {where}: {describe_error(e)}")
            return
        if lineprog is None:
            return

        header = lineprog.header
        version = header['version']
        if version not in SUPPORTED_LINE_VERSIONS:
            result.warn(f"line table at {where} has unsupported version {_hex(version)}")
            return

        include_directories = tuple(header.get('include_directory') or ())
        table.directories = include_directories if version >= 5 else (b'',) + include_directories

        # DWARF 5 keeps the raw formatted entries next to the legacy view
        formatted = header.get('file_names') or ()
        for position, entry in enumerate(header.get('file_entry') or ()):
            md5 = formatted[position].get('DW_LNCT_MD5') if position < len(formatted) else None
            table.entries.append(SourceFileEntry(
                name=entry.name,
                directory_index=_directory_index(entry.dir_index),
                timestamp=_int_or_none(entry.mtime),
                size=_int_or_none(entry.length),
                checksum=FileChecksum('md5', bytes(md5)) if isinstance(md5, list) and len(md5) == 16 else None,
            ))

        logger.debug(f"Unit {result.index}: DWARF {version} line table, {len(table.entries)} files")

    def _read_comp_dir(self, dwarf_info: DWARFInfo, cu: CompileUnit, top_die,
                       result: UnitResult) -> Optional[str]:
        attr = top_die.attributes.get('DW_AT_comp_dir')
        if attr is None:
            return ''
        value = attr.value
        if attr.form in INDIRECT_STRING_FORMS and isinstance(value, int):
            value = _indirect_string(dwarf_info, cu, top_die, value)
        if not isinstance(value, bytes):
            result.warn("compilation directory string is unreadable")
            return None
        try:
            return value.decode('utf-8')
        except UnicodeDecodeError:
            result.warn("compilation directory is not valid UTF-8")
            return None

    def _resolve_entries(self, table: UnitFileTable) -> UnitResult:
        """Resolve a unit's file table in table order into its UnitResult."""
        result = table.result
        comp_dir = table.comp_dir
        for position, entry in enumerate(table.entries):
            if not isinstance(entry.name, bytes):
                result.warn(f"file entry {position} has no readable name")
                continue
            if entry.name.startswith(PSEUDO_FILE_PREFIX) and not self.include_pseudo_files:
                continue
            try:
                file_name = entry.name.decode('utf-8')
            except UnicodeDecodeError:
                result.warn(f"file entry {position} name is not valid UTF-8")
                continue

            index = entry.directory_index
            if index is None or index >= len(table.directories):
                result.warn(
                    f"file entry {position} ({file_name}) uses directory index "
                    f"{'?' if index is None else _hex(index)}, which is out of range"
                )
                continue
            raw_directory = table.directories[index]
            if not isinstance(raw_directory, bytes):
                result.warn(f"directory of file entry {position} ({file_name}) is unreadable")
                continue
            try:
                directory = raw_directory.decode('utf-8')
            except UnicodeDecodeError:
                result.warn(f"directory of file entry {position} ({file_name}) is not valid UTF-8")
                continue

            if comp_dir is None and not is_absolute(file_name) and not is_absolute(directory):
                result.warn(
                    f"file entry {position} ({file_name}) is relative to an unreadable "
                    f"compilation directory"
                )
                continue

            result.files.append(SourceFile(
                path=resolve_source_path(comp_dir or '', directory, file_name),
                size=entry.size,
                timestamp=entry.timestamp,
                checksum=entry.checksum,
            ))
        return result
