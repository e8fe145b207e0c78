"""
Pure string composition of recorded source paths.

Debug info may describe files from any host, so nothing here touches the
filesystem or the running platform's path rules.
"""

import re

_WINDOWS_DRIVE = re.compile(r'^[A-Za-z]:[\\/]')
_REPEATED_SLASHES = re.compile(r'/{2,}')


def is_absolute(path: str) -> bool:
    """True for POSIX absolute paths, Windows drive paths and UNC paths."""
    return path.startswith('/') or path.startswith('\\') or bool(_WINDOWS_DRIVE.match(path))


def join_path(*parts: str) -> str:
    """Join path components with '/' and collapse redundant separators.

    Empty components are ignored. Separators inside components are kept as
    recorded except that runs of '/' are collapsed to one.
    """
    pieces = [part for part in parts if part]
    if not pieces:
        return ''
    joined = '/'.join(pieces)
    return _REPEATED_SLASHES.sub('/', joined)


def resolve_source_path(comp_dir: str, directory: str, file_name: str) -> str:
    """Resolve one file-table entry to a path string.

    Args:
        comp_dir: Compilation directory of the unit (may be empty)
        directory: Directory string the entry refers to (may be empty or relative)
        file_name: File name as recorded (may itself be absolute)

    Returns:
        Absolute file names verbatim; otherwise the directory (anchored at
        comp_dir when it is relative) joined with the file name.
    """
    if is_absolute(file_name):
        return file_name
    if directory and is_absolute(directory):
        return join_path(directory, file_name)
    return join_path(comp_dir, directory, file_name)
