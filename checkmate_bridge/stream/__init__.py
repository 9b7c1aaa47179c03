"""Streaming package"""
from .client import CheckmateClient, EventStream
from .decoder import SSEDecoder, decode_stream
from .errors import (
    CheckmateAPIError,
    CheckmateError,
    EmptyStreamError,
    InvalidResponseError,
    StreamInterruptedError,
)
from .relay import RelayResponse, StreamRelay

__all__ = [
    "CheckmateClient",
    "EventStream",
    "SSEDecoder",
    "decode_stream",
    "CheckmateAPIError",
    "CheckmateError",
    "EmptyStreamError",
    "InvalidResponseError",
    "StreamInterruptedError",
    "RelayResponse",
    "StreamRelay",
]
