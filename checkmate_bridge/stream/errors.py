"""
Errors raised while talking to the Checkmate backend
"""
from typing import Optional


class CheckmateError(Exception):
    """Base class for Checkmate communication failures."""


class CheckmateAPIError(CheckmateError):
    """The backend answered with a non-success status."""

    def __init__(self, message: str, status_code: int, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class EmptyStreamError(CheckmateError):
    """A streaming endpoint answered without a readable body."""


class StreamInterruptedError(CheckmateError):
    """The connection dropped before the stream ended naturally."""


class InvalidResponseError(CheckmateError):
    """The backend answered successfully but the body did not match the expected shape."""
