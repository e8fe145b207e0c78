"""
ELF container handling for DWARF extraction.

Opens the input with pyelftools and hands back its DWARFInfo. pyelftools
applies relocations of ET_REL objects and inflates both SHF_COMPRESSED and
legacy GNU .zdebug_* sections while loading.
"""

import io
import logging

from elftools.common.exceptions import ELFRelocationError
from elftools.dwarf.dwarfinfo import DWARFInfo
from elftools.elf.elffile import ELFFile

from compiledfiles.exceptions import CorruptDataError, MissingDebugInfoError, describe_error
from compiledfiles.models import ExtractionWarning

logger = logging.getLogger(__name__)

DEBUG_SECTION_PREFIXES = ('.debug_', '.zdebug_')


class BufferReader(io.RawIOBase):
    """Seekable read-only stream over a memoryview.

    Lets pyelftools read bytearray and memoryview inputs in place.
    """

    def __init__(self, view: memoryview):
        super().__init__()
        self._view = view
        self._pos = 0

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def tell(self) -> int:
        return self._pos

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if whence == io.SEEK_CUR:
            offset += self._pos
        elif whence == io.SEEK_END:
            offset += len(self._view)
        if offset < 0:
            raise ValueError(f"negative seek position {offset}")
        self._pos = offset
        return self._pos

    def readinto(self, buffer) -> int:
        start = min(self._pos, len(self._view))
        chunk = self._view[start:start + len(buffer)]
        buffer[:len(chunk)] = chunk
        self._pos = start + len(chunk)
        return len(chunk)


def open_stream(view: memoryview):
    """Stream for ELFFile; bytes inputs go through io.BytesIO, which shares them."""
    if isinstance(view.obj, bytes) and len(view) == len(view.obj):
        return io.BytesIO(view.obj)
    return BufferReader(view)


def _check_section_bounds(elffile: ELFFile, size: int):
    for section in elffile.iter_sections():
        if not section.name.startswith(DEBUG_SECTION_PREFIXES):
            continue
        if section['sh_type'] == 'SHT_NOBITS':
            continue
        end = section['sh_offset'] + section['sh_size']
        if end > size:
            raise CorruptDataError(
                f"{section.name} (offset 0x{section['sh_offset']:x}, size 0x{section['sh_size']:x}) "
                f"extends past end of file (0x{size:x})"
            )


def load_dwarf_info(view: memoryview) -> tuple[DWARFInfo, list[ExtractionWarning]]:
    """Parse the ELF container and load its DWARF sections.

    Args:
        view: Complete ELF image

    Returns:
        (DWARFInfo, container-level warnings)

    Raises:
        MissingDebugInfoError: No .debug_info or no .debug_line section
        CorruptDataError: Header or section table is invalid, or a debug
            section extends past the end of the input
    """
    warnings = []
    try:
        elffile = ELFFile(open_stream(view))
        _check_section_bounds(elffile, len(view))

        if not (elffile.get_section_by_name('.debug_info')
                or elffile.get_section_by_name('.zdebug_info')):
            raise MissingDebugInfoError()

        try:
            dwarf_info = elffile.get_dwarf_info()
        except ELFRelocationError as e:
            message = f"relocations for debug sections not applied: {describe_error(e)}"
            logger.warning(message)
            warnings.append(ExtractionWarning(None, message))
            dwarf_info = elffile.get_dwarf_info(relocate_dwarf_sections=False)
    except CorruptDataError:
        raise
    except Exception as e:
        # pyelftools surfaces construct, zlib and assertion errors on mangled input
        raise CorruptDataError(f"unreadable ELF container: {describe_error(e)}") from e

    if dwarf_info.debug_line_sec is None:
        raise MissingDebugInfoError("ELF file has no .debug_line section")

    logger.debug(
        f"ELF{elffile.elfclass} {'LE' if elffile.little_endian else 'BE'} "
        f"{elffile['e_type']}: .debug_info 0x{dwarf_info.debug_info_sec.size:x} bytes, "
        f".debug_line 0x{dwarf_info.debug_line_sec.size:x} bytes"
    )
    return dwarf_info, warnings
