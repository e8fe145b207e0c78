"""
DBI (debug info) stream: header, module list and source-info substream.

The DBI stream (stream 3) is a fixed 64-byte header followed by a series
of substreams whose sizes the header declares:

    module info | section contributions | section map | source info |
    type server map | EC names | optional debug header streams
"""

import logging
from dataclasses import dataclass
from typing import Optional

from compiledfiles.exceptions import DebugFormatError, UnexpectedEofError
from compiledfiles.utils.cursor import ByteCursor

logger = logging.getLogger(__name__)

DBI_STREAM = 3
DBI_HEADER_SIZE = 64
DBI_VERSION_SIGNATURE = 0xffffffff
NO_STREAM = 0xffff
SECTION_CONTRIBUTION_SIZE = 28


@dataclass(frozen=True)
class DbiHeader:
    """Fields of the DBI stream header used to locate substreams."""

    version: int
    age: int
    module_info_size: int
    section_contribution_size: int
    section_map_size: int
    source_info_size: int

    @property
    def source_info_offset(self) -> int:
        return (DBI_HEADER_SIZE + self.module_info_size
                + self.section_contribution_size + self.section_map_size)


@dataclass(frozen=True)
class PdbModule:
    """One module (object file / translation unit) listed in the DBI stream."""

    index: int
    module_name: bytes
    stream_index: int
    sym_byte_size: int
    c11_byte_size: int
    c13_byte_size: int

    @property
    def has_stream(self) -> bool:
        return self.stream_index != NO_STREAM

    @property
    def display_name(self) -> str:
        return self.module_name.decode('utf-8', errors='replace')


def parse_dbi_header(cursor: ByteCursor) -> DbiHeader:
    """Parse the 64-byte DBI header.

    Raises:
        DebugFormatError: Unknown header signature or negative substream sizes
    """
    signature = cursor.read_u32()
    if signature != DBI_VERSION_SIGNATURE:
        raise DebugFormatError(f"DBI stream has unsupported signature 0x{signature:08x}")
    version = cursor.read_u32()
    age = cursor.read_u32()
    cursor.skip(12)  # global/public/symbol-record stream indices and build numbers
    sizes = [cursor.read_i32() for _ in range(4)]
    type_server_map_size = cursor.read_i32()
    cursor.read_u32()  # MFC type server index
    optional_debug_header_size = cursor.read_i32()
    ec_substream_size = cursor.read_i32()
    cursor.read_u16()  # flags
    cursor.read_u16()  # machine
    cursor.read_u32()  # padding

    trailing = (type_server_map_size, optional_debug_header_size, ec_substream_size)
    if any(size < 0 for size in sizes) or any(size < 0 for size in trailing):
        raise DebugFormatError("DBI header declares a negative substream size")

    return DbiHeader(version, age, *sizes)


def _read_module_info(cursor: ByteCursor, index: int) -> PdbModule:
    start = cursor.position
    cursor.read_u32()  # unused
    cursor.skip(SECTION_CONTRIBUTION_SIZE)
    cursor.read_u16()  # flags
    stream_index = cursor.read_u16()
    sym_byte_size = cursor.read_u32()
    c11_byte_size = cursor.read_u32()
    c13_byte_size = cursor.read_u32()
    cursor.read_u16()  # source file count, superseded by the source-info substream
    cursor.read_u16()  # padding
    cursor.read_u32()  # unused
    cursor.read_u32()  # source file name index
    cursor.read_u32()  # PDB file path name index
    module_name = cursor.read_cstring()
    cursor.read_cstring()  # object file name
    # Records are 4-byte aligned relative to the substream start
    cursor.align(4)
    logger.debug(f"Module {index} at +0x{start:x}: {module_name!r}")
    return PdbModule(index, module_name, stream_index,
                     sym_byte_size, c11_byte_size, c13_byte_size)


def parse_module_infos(substream: ByteCursor) -> tuple[list[PdbModule], Optional[str]]:
    """Enumerate module records.

    Returns:
        (modules, problem) where problem describes a truncated trailing record
    """
    modules = []
    while not substream.at_end():
        try:
            modules.append(_read_module_info(substream, len(modules)))
        except UnexpectedEofError as e:
            return modules, f"module record {len(modules)} truncated: {e}"
    return modules, None


def parse_source_info(substream: ByteCursor) -> list[list[bytes]]:
    """Decode the per-module source file name lists.

    Returns:
        One list of raw names per module, in module order

    Raises:
        DebugFormatError, UnexpectedEofError: The substream is malformed
    """
    num_modules = substream.read_u16()
    substream.read_u16()  # source file count, truncated to 16 bits; recomputed below
    substream.skip(num_modules * 2)  # module index array
    counts = [substream.read_u16() for _ in range(num_modules)]
    total = sum(counts)
    if total * 4 > substream.remaining():
        raise DebugFormatError(f"source info lists {total} names but the substream is too short")
    offsets = [substream.read_u32() for _ in range(total)]
    names = substream.sub_cursor(substream.remaining())

    per_module = []
    position = 0
    for count in counts:
        module_names = []
        for offset in offsets[position:position + count]:
            module_names.append(names.cursor_at(offset).read_cstring())
        per_module.append(module_names)
        position += count
    return per_module


class DbiStream:
    """Parsed DBI stream: header, modules and the fallback name table."""

    def __init__(self, stream):
        cursor = ByteCursor(stream)
        self.header = parse_dbi_header(cursor)
        self.modules, self.module_problem = parse_module_infos(
            cursor.sub_cursor(self.header.module_info_size)
        )
        self.source_info: Optional[list[list[bytes]]] = None
        self.source_info_problem: Optional[str] = None
        try:
            source_cursor = ByteCursor(stream, self.header.source_info_offset,
                                       self.header.source_info_size)
            if self.header.source_info_size:
                self.source_info = parse_source_info(source_cursor)
        except (DebugFormatError, UnexpectedEofError) as e:
            self.source_info_problem = f"source info substream unusable: {e}"

    def source_names_for(self, module_index: int) -> Optional[list[bytes]]:
        if self.source_info is None or module_index >= len(self.source_info):
            return None
        return self.source_info[module_index]
