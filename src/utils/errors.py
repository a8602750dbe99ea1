"""Exception hierarchy shared by every layer.

Lives in utils/ (lowest layer) so validators can raise parameter errors
without importing upward; src.string_art re-exports these names.
"""


class StringArtError(Exception):
    """Base class for user-facing synthesis failures."""

    pass


class ImageDecodeError(StringArtError):
    """Raised when the source bitmap cannot be read or decoded."""

    pass


class InvalidParameterError(StringArtError, ValueError):
    """Raised when synthesis parameters or config files are out of bounds."""

    pass
