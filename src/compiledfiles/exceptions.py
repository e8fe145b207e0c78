"""
Extraction exception classes.

Fatal conditions raise a subclass of ExtractionError. Problems local to a single
compilation unit or module never raise; they are recorded as warnings on the result.
"""


class ExtractionError(Exception):
    """Base exception for all fatal extraction errors."""
    pass


class UnsupportedFormatError(ExtractionError):
    """Input is not an ELF or PDB file."""
    def __init__(self, reason: str = "File format was unrecognized"):
        super().__init__(reason)
        self.reason = reason


class CorruptDataError(ExtractionError):
    """Container-level structure is truncated or malformed."""
    def __init__(self, context: str):
        super().__init__(f"Corrupt debug data: {context}")
        self.context = context


class MissingDebugInfoError(CorruptDataError):
    """Container is valid but carries no usable debug information."""
    def __init__(self, context: str = "file was missing debug symbols"):
        super().__init__(context)


class ExtractionIoError(ExtractionError):
    """Input could not be read."""
    def __init__(self, path: str, reason: str):
        super().__init__(f"Error reading '{path}': {reason}")
        self.path = path
        self.reason = reason


class EmptyInputError(ExtractionError):
    """Input buffer has no bytes."""
    def __init__(self):
        super().__init__("Input is empty")


class UnexpectedEofError(Exception):
    """A read would have gone past the end of the buffer.

    Raised by ByteCursor. Extractors turn it into a per-unit warning or,
    at container level, into CorruptDataError.
    """
    def __init__(self, position: int, wanted: int, available: int):
        super().__init__(
            f"Unexpected end of data at offset 0x{position:x}: "
            f"wanted {wanted} bytes, {available} available"
        )
        self.position = position
        self.wanted = wanted
        self.available = available


class DebugFormatError(Exception):
    """Malformed content inside one unit or module.

    Never escapes an extractor; converted to a warning for that unit.
    """
    pass


def describe_error(error: Exception) -> str:
    """Render an exception raised while decoding input as warning text.

    Library errors may carry values straight from the input; str() on an
    int past the interpreter's digit limit raises ValueError itself.
    """
    try:
        text = str(error)
    except ValueError:
        text = ''
    name = type(error).__name__
    return f"{name}: {text}" if text else name
