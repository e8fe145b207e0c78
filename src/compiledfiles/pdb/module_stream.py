"""
Per-module debug stream: C13 debug subsections.

A module stream holds the module's symbols, then legacy C11 line info, then
C13 line info. Only the DEBUG_S_FILECHKSMS subsection of the C13 block is
read; it lists every source file the module's line tables refer to, as
offsets into the /names string table together with a content checksum.
"""

from dataclasses import dataclass
from typing import Optional

from compiledfiles.models import FileChecksum
from compiledfiles.pdb.dbi import PdbModule
from compiledfiles.utils.cursor import ByteCursor

DEBUG_S_FILECHKSMS = 0xf4

CHECKSUM_KINDS = {
    1: 'md5',
    2: 'sha1',
    3: 'sha256',
}


@dataclass(frozen=True)
class FileChecksumEntry:
    """One file reference from a DEBUG_S_FILECHKSMS subsection."""

    name_offset: int
    checksum: Optional[FileChecksum]


def _read_checksum_entries(body: ByteCursor) -> list[FileChecksumEntry]:
    entries = []
    while not body.at_end():
        name_offset = body.read_u32()
        checksum_size = body.read_u8()
        checksum_kind = body.read_u8()
        digest = body.read_bytes(checksum_size)
        body.align(4)
        kind = CHECKSUM_KINDS.get(checksum_kind)
        checksum = FileChecksum(kind, digest) if kind and digest else None
        entries.append(FileChecksumEntry(name_offset, checksum))
    return entries


def read_file_checksums(stream, module: PdbModule) -> Optional[list[FileChecksumEntry]]:
    """Collect file references from a module's C13 line information.

    Args:
        stream: Content of the module's debug stream
        module: DBI record describing the stream's layout

    Returns:
        File references in record order, or None if the module has no
        file checksum subsection

    Raises:
        UnexpectedEofError: Subsection headers or entries are truncated
    """
    if module.c13_byte_size == 0:
        return None

    cursor = ByteCursor(stream, module.sym_byte_size + module.c11_byte_size, module.c13_byte_size)
    entries = None
    while cursor.remaining() >= 8:
        kind = cursor.read_u32()
        length = cursor.read_u32()
        body = cursor.sub_cursor(length)
        cursor.align(4)
        if kind != DEBUG_S_FILECHKSMS:  # also skips kinds with the 0x80000000 ignore bit
            continue
        if entries is None:
            entries = []
        entries.extend(_read_checksum_entries(body))
    return entries
