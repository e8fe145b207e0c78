"""
PDB info stream (stream 1): version, age, GUID and the named
stream map used to find streams such as "/names".
"""

from dataclasses import dataclass, field

from compiledfiles.exceptions import DebugFormatError
from compiledfiles.utils.cursor import ByteCursor

PDB_INFO_STREAM = 1


@dataclass(frozen=True)
class PdbInfo:
    """Contents of the PDB info stream."""

    version: int
    age: int
    guid: bytes
    named_streams: dict[str, int] = field(default_factory=dict)

    @property
    def guid_string(self) -> str:
        g = self.guid
        return (f"{int.from_bytes(g[0:4], 'little'):08X}-{int.from_bytes(g[4:6], 'little'):04X}-"
                f"{int.from_bytes(g[6:8], 'little'):04X}-{g[8:10].hex().upper()}-{g[10:16].hex().upper()}")


def _set_bits(words: list[int]):
    for word_index, word in enumerate(words):
        bit = 0
        while word:
            if word & 1:
                yield word_index * 32 + bit
            word >>= 1
            bit += 1


def _read_bit_vector(cursor: ByteCursor) -> list[int]:
    word_count = cursor.read_u32()
    if word_count * 4 > cursor.remaining():
        raise DebugFormatError(f"bit vector of {word_count} words exceeds stream")
    return [cursor.read_u32() for _ in range(word_count)]


def parse_named_stream_map(cursor: ByteCursor) -> dict[str, int]:
    """Decode the serialized name -> stream index hash table."""
    names_size = cursor.read_u32()
    names = cursor.sub_cursor(names_size)
    cursor.read_u32()  # size
    cursor.read_u32()  # capacity
    present = _read_bit_vector(cursor)
    _read_bit_vector(cursor)  # deleted buckets

    streams = {}
    for _ in _set_bits(present):
        key = cursor.read_u32()
        stream_index = cursor.read_u32()
        names.seek(key)
        name = names.read_cstring().decode('utf-8', errors='replace')
        streams[name] = stream_index
    return streams


def parse_pdb_info(stream) -> PdbInfo:
    """Parse the PDB info stream.

    Raises:
        DebugFormatError, UnexpectedEofError: The stream is malformed
    """
    cursor = ByteCursor(stream)
    version = cursor.read_u32()
    cursor.read_u32()  # signature (creation time)
    age = cursor.read_u32()
    guid = cursor.read_bytes(16)
    named_streams = parse_named_stream_map(cursor)
    return PdbInfo(version, age, guid, named_streams)
