"""
DWARF names and limits used by the file-table reader.

Names are the strings pyelftools reports for enum-valued fields
(e.g. 'DW_UT_type', 'DW_FORM_strx1').
"""

SUPPORTED_LINE_VERSIONS = (2, 3, 4, 5)

# Unit types that carry no compilation of their own
SKIPPED_UNIT_TYPES = {
    'DW_UT_type': 'type unit',
    'DW_UT_split_compile': 'split compile unit',
    'DW_UT_split_type': 'split type unit',
}

# String forms resolved through .debug_str_offsets
INDIRECT_STRING_FORMS = frozenset((
    'DW_FORM_strx', 'DW_FORM_strx1', 'DW_FORM_strx2', 'DW_FORM_strx3', 'DW_FORM_strx4',
    'DW_FORM_GNU_str_index',
))

# Size of the .debug_str_offsets contribution header, by DWARF offset format
STR_OFFSETS_HEADER_SIZE = {32: 8, 64: 16}

# Producers emit pseudo file names such as "<built-in>" for compiler-internal input
PSEUDO_FILE_PREFIX = b'<'
