"""
Error types shared by the palette catalog and the dithering engine.
"""

__all__ = [
    'DitherError',
    'InvalidInputError',
    'InvalidPaletteColorError',
    'ProcessingFailureError',
    'DitherCancelledError',
]


class DitherError(Exception):
    """Base class for every error raised by the dithering library."""
    pass


class InvalidInputError(DitherError, ValueError):
    """Missing or malformed pixel buffer, resolver or selection id. Raised before any work starts."""
    pass


class InvalidPaletteColorError(DitherError, ValueError):
    """
    A palette entry that is not exactly three numeric channels.
    Only used internally by nearest-color search, which skips the entry.
    """
    pass


class ProcessingFailureError(DitherError, RuntimeError):
    """The color resolver returned a malformed color in the middle of a pass."""
    pass


class DitherCancelledError(DitherError):
    """The host asked to stop a pass at a row boundary."""
    pass
