"""
Bounds-checked reader over a byte buffer.

The PDB extractor reads MSF pages and streams through ByteCursor so that
truncated or hostile input surfaces as UnexpectedEofError instead of an
IndexError or a short read. All PDB structures are little-endian.
"""

import struct
from typing import Optional

from compiledfiles.exceptions import UnexpectedEofError

_U16 = struct.Struct('<H')
_U32 = struct.Struct('<I')
_I32 = struct.Struct('<i')


class ByteCursor:
    """Sequential/random-access reader over a read-only view of a buffer.

    The cursor borrows the buffer through a memoryview, so creating cursors over
    streams or sub-ranges never copies the underlying bytes.
    """

    def __init__(self, buffer, offset: int = 0, length: Optional[int] = None):
        view = buffer if isinstance(buffer, memoryview) else memoryview(buffer)
        if view.ndim != 1 or view.itemsize != 1:
            view = view.cast('B')
        end = len(view) if length is None else offset + length
        if offset < 0 or offset > len(view) or end > len(view) or end < offset:
            raise UnexpectedEofError(offset, max(end - offset, 0), max(len(view) - offset, 0))
        self._view = view[offset:end]
        self._pos = 0

    def __len__(self):
        return len(self._view)

    @property
    def position(self) -> int:
        return self._pos

    def remaining(self) -> int:
        return len(self._view) - self._pos

    def at_end(self) -> bool:
        return self._pos >= len(self._view)

    def seek(self, offset: int):
        """Move to an absolute offset within the view (end of view is allowed)."""
        if offset < 0 or offset > len(self._view):
            raise UnexpectedEofError(offset, 0, 0)
        self._pos = offset

    def skip(self, count: int):
        self._require(count)
        self._pos += count

    def align(self, alignment: int):
        """Advance to the next multiple of alignment, clamped to the end of the view."""
        misalign = self._pos % alignment
        if misalign:
            self._pos = min(self._pos + alignment - misalign, len(self._view))

    def _require(self, count: int):
        if count < 0 or count > len(self._view) - self._pos:
            raise UnexpectedEofError(self._pos, count, self.remaining())

    def _unpack(self, fmt: struct.Struct) -> int:
        self._require(fmt.size)
        value = fmt.unpack_from(self._view, self._pos)[0]
        self._pos += fmt.size
        return value

    def read_u8(self) -> int:
        self._require(1)
        value = self._view[self._pos]
        self._pos += 1
        return value

    def read_u16(self) -> int:
        return self._unpack(_U16)

    def read_u32(self) -> int:
        return self._unpack(_U32)

    def read_i32(self) -> int:
        return self._unpack(_I32)

    def read_bytes(self, count: int) -> bytes:
        self._require(count)
        data = self._view[self._pos:self._pos + count].tobytes()
        self._pos += count
        return data

    def read_cstring(self) -> bytes:
        """Read a NUL-terminated string; the terminator is consumed but not returned."""
        start = self._pos
        end = start
        limit = len(self._view)
        view = self._view
        while end < limit and view[end] != 0:
            end += 1
        if end >= limit:
            raise UnexpectedEofError(start, end - start + 1, limit - start)
        self._pos = end + 1
        return view[start:end].tobytes()

    def sub_cursor(self, length: int) -> 'ByteCursor':
        """Consume length bytes and return a cursor bounded to exactly those bytes."""
        self._require(length)
        sub = ByteCursor(self._view, self._pos, length)
        self._pos += length
        return sub

    def cursor_at(self, offset: int, length: Optional[int] = None) -> 'ByteCursor':
        """Return an independent cursor over [offset, offset+length) of this view."""
        return ByteCursor(self._view, offset, length)
