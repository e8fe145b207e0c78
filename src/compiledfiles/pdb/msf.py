"""
MSF 7.00 (Multi-Stream File) container, the page-based layer under PDB.

Layout:
    superblock (block 0) -> block map -> stream directory blocks
    stream directory = stream count, stream sizes, per-stream block lists

Streams are reassembled from their blocks on demand. A stream whose blocks
happen to be contiguous is returned as a view into the input buffer.
"""

import logging
from dataclasses import dataclass

from compiledfiles.exceptions import CorruptDataError, DebugFormatError, UnexpectedEofError
from compiledfiles.sniffer import MSF7_MAGIC
from compiledfiles.utils.cursor import ByteCursor

logger = logging.getLogger(__name__)

VALID_BLOCK_SIZES = (512, 1024, 2048, 4096)
NIL_STREAM_SIZE = 0xffffffff


@dataclass(frozen=True)
class SuperBlock:
    """MSF superblock fields."""

    block_size: int
    num_blocks: int
    num_directory_bytes: int
    block_map_addr: int


@dataclass(frozen=True)
class StreamInfo:
    """Size and ordered block list of one stream."""

    index: int
    size: int
    blocks: tuple[int, ...]


def _block_count(size: int, block_size: int) -> int:
    return (size + block_size - 1) // block_size


class MsfFile:
    """Parsed MSF container over an in-memory buffer.

    Construction parses the superblock and the stream directory; any problem
    there is fatal since no stream can be located without them.

    Raises:
        CorruptDataError: Superblock or stream directory is invalid
    """

    def __init__(self, data):
        self._buffer = memoryview(data)
        try:
            self.superblock = self._read_superblock()
            self.streams = self._read_directory()
        except UnexpectedEofError as e:
            raise CorruptDataError(f"MSF structure truncated: {e}") from e
        logger.debug(
            f"MSF block size {self.superblock.block_size}, "
            f"{self.superblock.num_blocks} blocks, {len(self.streams)} streams"
        )

    @property
    def stream_count(self) -> int:
        return len(self.streams)

    def _read_superblock(self) -> SuperBlock:
        cursor = ByteCursor(self._buffer)
        if cursor.read_bytes(len(MSF7_MAGIC)) != MSF7_MAGIC:
            raise CorruptDataError("missing MSF 7.00 signature")
        block_size = cursor.read_u32()
        cursor.read_u32()  # free block map block
        num_blocks = cursor.read_u32()
        num_directory_bytes = cursor.read_u32()
        cursor.read_u32()  # unknown
        block_map_addr = cursor.read_u32()

        if block_size not in VALID_BLOCK_SIZES:
            raise CorruptDataError(f"invalid MSF block size {block_size}")
        if num_blocks * block_size > len(self._buffer):
            raise CorruptDataError(
                f"MSF declares {num_blocks} blocks of {block_size} bytes "
                f"but the file has {len(self._buffer)} bytes"
            )
        if block_map_addr == 0 or block_map_addr >= num_blocks:
            raise CorruptDataError(f"block map address {block_map_addr} is out of range")

        return SuperBlock(block_size, num_blocks, num_directory_bytes, block_map_addr)

    def _check_block(self, block: int, what: str):
        if block >= self.superblock.num_blocks:
            raise CorruptDataError(
                f"{what} references block {block} beyond the {self.superblock.num_blocks} in the file"
            )

    def _read_directory(self) -> dict[int, StreamInfo]:
        sb = self.superblock
        dir_block_count = _block_count(sb.num_directory_bytes, sb.block_size)
        if dir_block_count == 0:
            raise CorruptDataError("stream directory is empty")

        block_map = ByteCursor(self._buffer, sb.block_map_addr * sb.block_size)
        dir_blocks = []
        for _ in range(dir_block_count):
            block = block_map.read_u32()
            self._check_block(block, "stream directory")
            dir_blocks.append(block)

        directory = ByteCursor(self._assemble(dir_blocks, sb.num_directory_bytes))
        num_streams = directory.read_u32()
        if num_streams * 4 > directory.remaining():
            raise CorruptDataError(f"stream directory claims {num_streams} streams")

        sizes = []
        for _ in range(num_streams):
            size = directory.read_u32()
            sizes.append(0 if size == NIL_STREAM_SIZE else size)

        streams = {}
        for index, size in enumerate(sizes):
            count = _block_count(size, sb.block_size)
            if count * 4 > directory.remaining():
                raise CorruptDataError(f"stream directory truncated at stream {index}")
            blocks = []
            for _ in range(count):
                block = directory.read_u32()
                self._check_block(block, f"stream {index}")
                blocks.append(block)
            streams[index] = StreamInfo(index, size, tuple(blocks))
        return streams

    def _assemble(self, blocks, size: int):
        """Concatenate blocks and trim to size, borrowing when contiguous."""
        block_size = self.superblock.block_size
        if not blocks:
            return self._buffer[0:0]
        first = blocks[0]
        contiguous = all(block == first + i for i, block in enumerate(blocks))
        if contiguous:
            start = first * block_size
            return self._buffer[start:start + size]
        data = b''.join(
            self._buffer[block * block_size:(block + 1) * block_size] for block in blocks
        )
        return memoryview(data)[:size]

    def read_stream(self, index: int):
        """Return the content of a stream as a read-only buffer.

        Raises:
            DebugFormatError: If the stream does not exist
        """
        info = self.streams.get(index)
        if info is None:
            raise DebugFormatError(f"stream {index} does not exist ({len(self.streams)} streams)")
        return self._assemble(info.blocks, info.size)
