"""
The PDB global string table ("/names" stream).

Source file references in module line information are byte offsets into
this table's string buffer.
"""

from compiledfiles.exceptions import DebugFormatError, UnexpectedEofError
from compiledfiles.utils.cursor import ByteCursor

NAMES_STREAM_NAME = "/names"
NAMES_SIGNATURE = 0xeffeeffe
NAMES_HASH_VERSIONS = (1, 2)


class StringTable:
    """Offset -> string resolver over the /names string buffer."""

    def __init__(self, stream):
        cursor = ByteCursor(stream)
        signature = cursor.read_u32()
        if signature != NAMES_SIGNATURE:
            raise DebugFormatError(f"/names stream has bad signature 0x{signature:08x}")
        self.hash_version = cursor.read_u32()
        if self.hash_version not in NAMES_HASH_VERSIONS:
            raise DebugFormatError(f"/names stream has unknown hash version {self.hash_version}")
        byte_size = cursor.read_u32()
        self._strings = cursor.sub_cursor(byte_size)

    def __len__(self):
        return len(self._strings)

    def get(self, offset: int) -> bytes:
        """Return the raw string at offset.

        Raises:
            DebugFormatError: If offset does not start a terminated string
        """
        try:
            cursor = self._strings.cursor_at(offset)
            return cursor.read_cstring()
        except UnexpectedEofError:
            raise DebugFormatError(f"name offset 0x{offset:x} is outside the string table") from None
