"""
Pytest fixtures for compiledfiles.

Test inputs are synthesised in memory: DwarfBuilder lays out DWARF sections,
ElfImageBuilder wraps them in an ELF container, and PdbBuilder writes an
MSF 7.00 file with a DBI stream, a /names stream and per-module streams.
"""

import struct
import zlib
from typing import Dict, List, Optional, Sequence, Tuple

import pytest


# Constants
DW_TAG_compile_unit = 0x11
DW_AT_name = 0x03
DW_AT_stmt_list = 0x10
DW_AT_comp_dir = 0x1b
DW_AT_producer = 0x25
DW_AT_str_offsets_base = 0x72
DW_FORM_data4 = 0x06
DW_FORM_string = 0x08
DW_FORM_udata = 0x0f
DW_FORM_strp = 0x0e
DW_FORM_sec_offset = 0x17
DW_FORM_strx1 = 0x25
DW_FORM_line_strp = 0x1f
DW_FORM_data16 = 0x1e
DW_LNCT_path = 0x1
DW_LNCT_directory_index = 0x2
DW_LNCT_MD5 = 0x5

SHT_PROGBITS = 1
SHT_SYMTAB = 2
SHT_STRTAB = 3
SHT_RELA = 4
SHT_NOBITS = 8
SHF_INFO_LINK = 0x40
SHF_COMPRESSED = 0x800
ELFCOMPRESS_ZLIB = 1
R_X86_64_32 = 10
STT_SECTION = 3

MSF7_MAGIC = b"Microsoft C/C++ MSF 7.00\r\n\x1aDS\x00\x00\x00"
STANDARD_OPCODE_LENGTHS = bytes([0, 1, 1, 1, 1, 0, 0, 0, 1, 0, 0, 1])
END_SEQUENCE = b"\x00\x01\x01"


def uleb(value: int) -> bytes:
    """Encode an unsigned LEB128 value."""
    out = bytearray()
    while True:
        byte = value & 0x7f
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def cstr(text) -> bytes:
    if isinstance(text, str):
        text = text.encode("utf-8")
    return text + b"\0"


class StringPool:
    """String section contents with offset lookup (deduplicated)."""

    def __init__(self, leading_empty: bool = False):
        self.data = bytearray(b"\0" if leading_empty else b"")
        self.offsets: Dict[bytes, int] = {}

    def add(self, text) -> int:
        raw = text.encode("utf-8") if isinstance(text, str) else text
        if raw not in self.offsets:
            self.offsets[raw] = len(self.data)
            self.data += raw + b"\0"
        return self.offsets[raw]

    def __bytes__(self):
        return bytes(self.data)


class DwarfBuilder:
    """Builds .debug_info/.debug_abbrev/.debug_line/.debug_str/.debug_line_str.

    Each add_unit_* call appends one compilation unit with its own
    abbreviation table and line program.
    """

    def __init__(self, endian: str = "<"):
        self.endian = endian
        self.debug_str = StringPool()
        self.debug_line_str = StringPool()
        self.debug_str_offsets = bytearray()
        self.abbrev = bytearray()
        self.info = bytearray()
        self.line = bytearray()
        # .debug_info offsets of each DW_FORM_strp comp_dir value
        self.comp_dir_positions: List[int] = []

    def _p(self, fmt: str, *values) -> bytes:
        return struct.pack(self.endian + fmt, *values)

    def _line_prologue(self, version: int) -> bytes:
        fields = bytes([1])  # minimum_instruction_length
        if version >= 4:
            fields += bytes([1])  # maximum_operations_per_instruction
        return fields + bytes([1, 0xfb, 14, 13]) + STANDARD_OPCODE_LENGTHS

    def line_program_v2to4(self, version: int, include_dirs: Sequence[str],
                           files: Sequence[tuple]) -> int:
        """Append a DWARF 2-4 line program; returns its offset."""
        tables = bytearray(self._line_prologue(version))
        for directory in include_dirs:
            tables += cstr(directory)
        tables += b"\0"
        for entry in files:
            name, dir_index = entry[0], entry[1]
            mtime = entry[2] if len(entry) > 2 else 0
            size = entry[3] if len(entry) > 3 else 0
            tables += cstr(name) + uleb(dir_index) + uleb(mtime) + uleb(size)
        tables += b"\0"
        unit = self._p("H", version) + self._p("I", len(tables)) + bytes(tables) + END_SEQUENCE
        offset = len(self.line)
        self.line += self._p("I", len(unit)) + unit
        return offset

    def line_program_v5(self, directories: Sequence[str], files: Sequence[tuple],
                        md5s: Optional[Sequence[bytes]] = None) -> int:
        """Append a DWARF 5 line program (paths via .debug_line_str); returns its offset."""
        tables = bytearray(self._line_prologue(5))
        tables += bytes([1]) + uleb(DW_LNCT_path) + uleb(DW_FORM_line_strp)
        tables += uleb(len(directories))
        for directory in directories:
            tables += self._p("I", self.debug_line_str.add(directory))

        file_format = [(DW_LNCT_path, DW_FORM_line_strp), (DW_LNCT_directory_index, DW_FORM_udata)]
        if md5s is not None:
            file_format.append((DW_LNCT_MD5, DW_FORM_data16))
        tables += bytes([len(file_format)])
        for content, form in file_format:
            tables += uleb(content) + uleb(form)
        tables += uleb(len(files))
        for i, (name, dir_index) in enumerate(files):
            tables += self._p("I", self.debug_line_str.add(name)) + uleb(dir_index)
            if md5s is not None:
                tables += md5s[i]

        unit = (self._p("H", 5) + bytes([8, 0]) + self._p("I", len(tables))
                + bytes(tables) + END_SEQUENCE)
        offset = len(self.line)
        self.line += self._p("I", len(unit)) + unit
        return offset

    def _add_abbrev(self, specs: Sequence[Tuple[int, int]]) -> int:
        offset = len(self.abbrev)
        self.abbrev += uleb(1) + uleb(DW_TAG_compile_unit) + bytes([0])
        for name, form in specs:
            self.abbrev += uleb(name) + uleb(form)
        self.abbrev += b"\0\0" + b"\0"
        return offset

    def add_unit_v4(self, comp_dir: Optional[str], name: str, include_dirs: Sequence[str],
                    files: Sequence[tuple], version: int = 4) -> int:
        """Append a DWARF 2-4 compile unit (comp_dir via DW_FORM_strp); returns its offset."""
        stmt_list = self.line_program_v2to4(version, include_dirs, files)
        stmt_form = DW_FORM_sec_offset if version >= 4 else DW_FORM_data4
        specs = [(DW_AT_producer, DW_FORM_string), (DW_AT_name, DW_FORM_string)]
        if comp_dir is not None:
            specs.append((DW_AT_comp_dir, DW_FORM_strp))
        specs.append((DW_AT_stmt_list, stmt_form))
        abbrev_offset = self._add_abbrev(specs)

        die = uleb(1) + cstr("GNU C17 11.4.0") + cstr(name)
        offset = len(self.info)
        if comp_dir is not None:
            self.comp_dir_positions.append(offset + 11 + len(die))
            die += self._p("I", self.debug_str.add(comp_dir))
        die += self._p("I", stmt_list)
        body = self._p("H", version) + self._p("I", abbrev_offset) + bytes([8]) + die
        self.info += self._p("I", len(body)) + body
        return offset

    def add_unit_v5(self, comp_dir: str, name: str, directories: Sequence[str],
                    files: Sequence[tuple], md5s: Optional[Sequence[bytes]] = None,
                    strx_comp_dir: bool = False, str_offsets_base: bool = True) -> int:
        """Append a DWARF 5 compile unit; returns its offset.

        With strx_comp_dir the compilation directory goes through
        .debug_str_offsets (DW_FORM_strx1, plus DW_AT_str_offsets_base
        unless str_offsets_base is False).
        """
        stmt_list = self.line_program_v5(directories, files, md5s)
        specs = [(DW_AT_name, DW_FORM_line_strp)]
        die = uleb(1) + self._p("I", self.debug_line_str.add(name))
        if strx_comp_dir:
            base = len(self.debug_str_offsets) + 8
            header_body = self._p("H", 5) + self._p("H", 0)
            entry = self._p("I", self.debug_str.add(comp_dir))
            self.debug_str_offsets += self._p("I", len(header_body) + len(entry)) + header_body + entry
            if str_offsets_base:
                specs.append((DW_AT_str_offsets_base, DW_FORM_sec_offset))
                die += self._p("I", base)
            specs.append((DW_AT_comp_dir, DW_FORM_strx1))
            # Without a base attribute the index counts from the first contribution
            die += bytes([0 if str_offsets_base else (base - 8) // 4])
        else:
            specs.append((DW_AT_comp_dir, DW_FORM_line_strp))
            die += self._p("I", self.debug_line_str.add(comp_dir))
        specs.append((DW_AT_stmt_list, DW_FORM_sec_offset))
        die += self._p("I", stmt_list)
        abbrev_offset = self._add_abbrev(specs)

        body = self._p("H", 5) + bytes([1, 8]) + self._p("I", abbrev_offset) + die
        offset = len(self.info)
        self.info += self._p("I", len(body)) + body
        return offset

    def sections(self) -> Dict[str, bytes]:
        sections = {
            ".debug_info": bytes(self.info),
            ".debug_abbrev": bytes(self.abbrev),
            ".debug_line": bytes(self.line),
            ".debug_str": bytes(self.debug_str),
        }
        if self.debug_line_str.data:
            sections[".debug_line_str"] = bytes(self.debug_line_str)
        if self.debug_str_offsets:
            sections[".debug_str_offsets"] = bytes(self.debug_str_offsets)
        return sections


class ElfImageBuilder:
    """Wraps named sections in a minimal ELF file (no program headers)."""

    def __init__(self, elfclass: int = 64, endian: str = "<", e_type: int = 2):
        self.elfclass = elfclass
        self.endian = endian
        self.e_type = e_type
        self.sections: List[tuple] = []

    def add_section(self, name: str, data: bytes, sh_type: int = SHT_PROGBITS, flags: int = 0,
                    link: int = 0, info: int = 0, entsize: int = 0) -> int:
        """Append a section; returns its section header index."""
        self.sections.append((name, sh_type, flags, data, link, info, entsize))
        return len(self.sections)

    def add_sections(self, sections: Dict[str, bytes]):
        for name, data in sections.items():
            self.add_section(name, data)
        return self

    def build(self) -> bytes:
        e = self.endian
        is64 = self.elfclass == 64
        ehsize = 64 if is64 else 52
        shentsize = 64 if is64 else 40

        shstrtab = StringPool(leading_empty=True)
        name_offsets = [shstrtab.add(section[0]) for section in self.sections]
        shstrtab_name = shstrtab.add(".shstrtab")
        all_sections = [(name_offsets[i],) + section[1:] for i, section in enumerate(self.sections)]
        all_sections.append((shstrtab_name, SHT_STRTAB, 0, bytes(shstrtab), 0, 0, 0))

        image = bytearray(ehsize)
        placed = []
        for name_offset, sh_type, flags, data, link, info, entsize in all_sections:
            while len(image) % 8:
                image.append(0)
            offset = len(image)
            if sh_type != SHT_NOBITS:
                image += data
            placed.append((name_offset, sh_type, flags, offset, len(data), link, info, entsize))
        while len(image) % 8:
            image.append(0)
        shoff = len(image)

        shdr_fmt = e + ("IIQQQQIIQQ" if is64 else "IIIIIIIIII")
        image += b"\0" * shentsize  # SHN_UNDEF
        for name_offset, sh_type, flags, offset, size, link, info, entsize in placed:
            image += struct.pack(shdr_fmt, name_offset, sh_type, flags, 0, offset, size,
                                 link, info, 1, entsize)

        shnum = len(placed) + 1
        ident = b"\x7fELF" + bytes([2 if is64 else 1, 1 if e == "<" else 2, 1, 0]) + b"\0" * 8
        machine = 62 if is64 else (3 if e == "<" else 20)
        if is64:
            header = struct.pack(e + "HHIQQQIHHHHHH", self.e_type, machine, 1, 0, 0, shoff, 0,
                                 ehsize, 0, 0, shentsize, shnum, shnum - 1)
        else:
            header = struct.pack(e + "HHIIIIIHHHHHH", self.e_type, machine, 1, 0, 0, shoff, 0,
                                 ehsize, 0, 0, shentsize, shnum, shnum - 1)
        image[0:ehsize] = ident + header
        return bytes(image)


def zdebug(data: bytes) -> bytes:
    """Legacy GNU .zdebug_* section payload."""
    return b"ZLIB" + struct.pack(">Q", len(data)) + zlib.compress(data)


def compressed_section(data: bytes) -> bytes:
    """ELF64 little-endian SHF_COMPRESSED payload (Elf64_Chdr + zlib stream)."""
    return struct.pack("<IIQQ", ELFCOMPRESS_ZLIB, 0, len(data), 1) + zlib.compress(data)


def relocatable_image(sections: Dict[str, bytes], relocations: Dict[str, List[Tuple[int, int]]]) -> bytes:
    """ELF64 x86-64 ET_REL object whose .rela sections patch 32-bit offsets.

    relocations maps a section name to (offset, addend) pairs; every entry
    is an R_X86_64_32 against the section symbol of .debug_str.
    """
    image = ElfImageBuilder(e_type=1)
    indices = {name: image.add_section(name, data) for name, data in sections.items()}
    strtab = image.add_section(".strtab", b"\0", sh_type=SHT_STRTAB)
    symbols = b"\0" * 24 + struct.pack("<IBBHQQ", 0, STT_SECTION, 0, indices[".debug_str"], 0, 0)
    symtab = image.add_section(".symtab", symbols, sh_type=SHT_SYMTAB, link=strtab, info=2, entsize=24)
    for name, entries in relocations.items():
        rela = b"".join(struct.pack("<QQq", offset, (1 << 32) | R_X86_64_32, addend)
                        for offset, addend in entries)
        image.add_section(".rela" + name, rela, sh_type=SHT_RELA, flags=SHF_INFO_LINK,
                          link=symtab, info=indices[name], entsize=24)
    return image.build()


class PdbBuilder:
    """Writes an MSF 7.00 PDB with module source file references.

    Stream layout: 0 old directory, 1 PDB info, 2 TPI, 3 DBI, 4 IPI,
    5 /names, 6.. module streams.
    """

    BLOCK_SIZE = 512
    NAMES_STREAM = 5

    def __init__(self, scatter_blocks: bool = False):
        self.scatter_blocks = scatter_blocks
        self.names = StringPool(leading_empty=True)
        self.modules: List[dict] = []

    def add_module(self, name: str, files: Sequence, checksums: bool = True,
                   c13: bool = True, raw_offsets: Optional[Sequence[int]] = None):
        """Add a module whose C13 file checksum table lists files in order.

        With c13=False the files only appear in the DBI source-info table.
        raw_offsets overrides the /names offsets written for each file.
        """
        self.modules.append({
            "name": name,
            "files": list(files),
            "checksums": checksums,
            "c13": c13,
            "raw_offsets": raw_offsets,
        })
        return self

    def _module_stream(self, module: dict) -> bytes:
        entries = bytearray()
        offsets = module["raw_offsets"] or [self.names.add(f) for f in module["files"]]
        for i, offset in enumerate(offsets):
            if module["checksums"]:
                digest = bytes([i + 1]) * 16
                entries += struct.pack("<IBB", offset, 16, 1) + digest
            else:
                entries += struct.pack("<IBB", offset, 0, 0)
            while len(entries) % 4:
                entries.append(0)

        c13 = bytearray()
        # A subsection of another kind precedes the file checksums
        c13 += struct.pack("<II", 0xf1, 4) + b"\0\0\0\0"
        c13 += struct.pack("<II", 0xf4, len(entries)) + entries
        return struct.pack("<I", 4) + bytes(c13)

    def _info_stream(self) -> bytes:
        names_buffer = b"/names\0"
        stream = struct.pack("<III", 20000404, 0x5f3759df, 1) + bytes(range(16))
        stream += struct.pack("<I", len(names_buffer)) + names_buffer
        stream += struct.pack("<II", 1, 1)  # size, capacity
        stream += struct.pack("<II", 1, 1)  # present bit vector: 1 word, bucket 0
        stream += struct.pack("<I", 0)  # deleted bit vector: 0 words
        stream += struct.pack("<II", 0, self.NAMES_STREAM)
        stream += struct.pack("<I", 20140508)
        return stream

    def _names_stream(self) -> bytes:
        buffer = bytes(self.names)
        return (struct.pack("<III", 0xeffeeffe, 1, len(buffer)) + buffer
                + struct.pack("<III", 1, 0, len(self.names.offsets)))

    def _dbi_stream(self, module_streams: List[Optional[int]], c13_sizes: List[int]) -> bytes:
        mod_info = bytearray()
        for i, module in enumerate(self.modules):
            stream_index = module_streams[i] if module_streams[i] is not None else 0xffff
            sym_size = 4 if module["c13"] else 0
            record = struct.pack("<I", 0)
            record += struct.pack("<HHiiIHHII", 1, 0, 0, 0, 0, i, 0, 0, 0)
            record += struct.pack("<HHIIIHHIII", 0, stream_index, sym_size, 0, c13_sizes[i],
                                  len(module["files"]), 0, 0, 0, 0)
            record += cstr(module["name"]) + cstr(module["name"].replace(".obj", ".lib"))
            mod_info += record
            while len(mod_info) % 4:
                mod_info.append(0)

        file_names = StringPool()
        counts = [len(m["files"]) for m in self.modules]
        source_info = struct.pack("<HH", len(self.modules), sum(counts))
        start = 0
        for count in counts:
            source_info += struct.pack("<H", start)
            start += count
        for count in counts:
            source_info += struct.pack("<H", count)
        for module in self.modules:
            for f in module["files"]:
                source_info += struct.pack("<I", file_names.add(f))
        source_info += bytes(file_names)
        while len(source_info) % 4:
            source_info += b"\0"

        header = struct.pack("<IIIHHHHHH", 0xffffffff, 19990903, 1, 0xffff, 0x8e1d, 0xffff, 0, 0xffff, 0)
        header += struct.pack("<iiiiiIiiHHI", len(mod_info), 0, 0, len(source_info), 0, 0, 0, 0,
                              0, 0x8664, 0)
        assert len(header) == 64
        return header + bytes(mod_info) + source_info

    def streams(self) -> List[bytes]:
        module_streams = []
        module_data = []
        c13_sizes = []
        next_index = 6
        for module in self.modules:
            if module["c13"]:
                data = self._module_stream(module)
                module_streams.append(next_index)
                module_data.append(data)
                c13_sizes.append(len(data) - 4)
                next_index += 1
            else:
                module_streams.append(None)
                c13_sizes.append(0)
        # /names content is final only after module streams registered their names
        dbi = self._dbi_stream(module_streams, c13_sizes)
        return [b"", self._info_stream(), b"", dbi, b"", self._names_stream()] + module_data

    def build(self) -> bytes:
        bs = self.BLOCK_SIZE
        streams = self.streams()
        blocks: Dict[int, bytes] = {}
        next_block = 3  # 0 superblock, 1-2 free page maps
        stream_blocks = []
        for data in streams:
            count = (len(data) + bs - 1) // bs
            indices = list(range(next_block, next_block + count))
            next_block += count
            if self.scatter_blocks:
                indices.reverse()
            for i, block in enumerate(indices):
                blocks[block] = data[i * bs:(i + 1) * bs]
            stream_blocks.append(indices)

        directory = struct.pack("<I", len(streams))
        directory += b"".join(struct.pack("<I", len(data)) for data in streams)
        for indices in stream_blocks:
            directory += b"".join(struct.pack("<I", block) for block in indices)
        dir_count = (len(directory) + bs - 1) // bs
        dir_indices = list(range(next_block, next_block + dir_count))
        for i, block in enumerate(dir_indices):
            blocks[block] = directory[i * bs:(i + 1) * bs]
        next_block += dir_count

        block_map_addr = next_block
        blocks[block_map_addr] = b"".join(struct.pack("<I", block) for block in dir_indices)
        num_blocks = block_map_addr + 1

        superblock = MSF7_MAGIC + struct.pack("<IIIIII", bs, 1, num_blocks, len(directory), 0,
                                              block_map_addr)
        blocks[0] = superblock
        image = bytearray()
        for block in range(num_blocks):
            image += blocks.get(block, b"").ljust(bs, b"\0")
        return bytes(image)


SIMPLE_C_COMP_DIR = "/home/matt/dev/examples/simple_c"
SIMPLE_C_EXPECTED = [
    "/home/matt/dev/examples/simple_c/main.c",
    "/usr/include/stdio.h",
    "/usr/include/x86_64-linux-gnu/bits/types/FILE.h",
]


@pytest.fixture
def dwarf_builder():
    """Factory for DwarfBuilder instances."""
    return DwarfBuilder


@pytest.fixture
def elf_image():
    """Factory: elf_image(sections, elfclass=64, endian='<') -> ELF bytes."""
    def build(sections: Dict[str, bytes], elfclass: int = 64, endian: str = "<",
              e_type: int = 2) -> bytes:
        return ElfImageBuilder(elfclass, endian, e_type).add_sections(sections).build()
    return build


@pytest.fixture
def simple_c_dwarf():
    """DwarfBuilder holding the single-unit simple_c example (DWARF 4)."""
    builder = DwarfBuilder()
    builder.add_unit_v4(
        SIMPLE_C_COMP_DIR,
        "main.c",
        ["/usr/include", "/usr/include/x86_64-linux-gnu/bits/types"],
        [("main.c", 0, 1700000000, 91), ("stdio.h", 1), ("FILE.h", 2), ("<built-in>", 0)],
    )
    return builder


@pytest.fixture
def simple_c_elf(simple_c_dwarf, elf_image):
    """ELF64 image of the simple_c example."""
    return elf_image(simple_c_dwarf.sections())


@pytest.fixture
def pdb_builder():
    """Factory for PdbBuilder instances."""
    return PdbBuilder


@pytest.fixture
def two_module_pdb():
    """PDB with two modules sharing a header."""
    builder = PdbBuilder()
    builder.add_module("main.obj", ["C:\\src\\main.cpp", "C:\\src\\common.h"])
    builder.add_module("util.obj", ["C:\\src\\util.cpp", "C:\\src\\common.h"])
    return builder.build()
