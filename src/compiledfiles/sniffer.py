"""
Binary format detection.

Classifies an input buffer as ELF or PDB from its leading magic bytes so the
facade can dispatch to the matching extractor. Detection looks only at the
prefix; there is no scoring or fallback guessing.
"""

from compiledfiles.exceptions import UnsupportedFormatError
from compiledfiles.models import FormatKind

# Magic bytes for format detection
ELF_MAGIC = b"\x7fELF"
MSF7_MAGIC = b"Microsoft C/C++ MSF 7.00\r\n\x1aDS\x00\x00\x00"

# Recognised containers that have no extractor yet
_UNSUPPORTED_MAGICS = [
    (b"Microsoft C/C++ program database 2.00\r\n\x1aJG\x00\x00", "PDB 2.00 (small MSF) files are not supported"),
    (b"\xfe\xed\xfa\xce", "Mach-O files are not supported yet"),
    (b"\xfe\xed\xfa\xcf", "Mach-O files are not supported yet"),
    (b"\xce\xfa\xed\xfe", "Mach-O files are not supported yet"),
    (b"\xcf\xfa\xed\xfe", "Mach-O files are not supported yet"),
    (b"\xca\xfe\xba\xbe", "Mach-O universal binaries are not supported yet"),
    (b"MZ", "PE/COFF images carry no embedded source table; pass the matching .pdb"),
]

MIN_MAGIC_LENGTH = len(ELF_MAGIC)


def sniff_format(data) -> FormatKind:
    """Detect the container format of a buffer.

    Args:
        data: Bytes-like object holding the complete file

    Returns:
        FormatKind.ELF or FormatKind.PDB

    Raises:
        UnsupportedFormatError: If the prefix matches neither format
    """
    prefix = bytes(data[:len(MSF7_MAGIC)])

    if len(prefix) < MIN_MAGIC_LENGTH:
        raise UnsupportedFormatError(f"Input too small to identify ({len(prefix)} bytes)")

    if prefix.startswith(ELF_MAGIC):
        return FormatKind.ELF

    if prefix == MSF7_MAGIC:
        return FormatKind.PDB

    for magic, reason in _UNSUPPORTED_MAGICS:
        if bytes(data[:len(magic)]) == magic:
            raise UnsupportedFormatError(reason)

    raise UnsupportedFormatError()
