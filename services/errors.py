"""
Errors raised by the book services. The HTTP layer maps them onto status codes.
"""
from typing import Optional


class BookError(Exception):
    """Base class for every failure surfaced to callers."""

    kind = "error"
    status = 500

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.path = str(path) if path is not None else None


class InvalidInput(BookError):
    """Malformed id, over-quota batch, blank text or URL. Raised before any I/O."""

    kind = "invalid_input"
    status = 400


class NotFound(BookError):
    kind = "not_found"
    status = 404


class IOFailure(BookError):
    """Read, write or rename failure on `path`."""

    kind = "io_failure"
    status = 500


class CorruptState(BookError):
    kind = "corrupt_state"
    status = 500
