"""
SSE Decoder - Reassembles ``data:`` frames from arbitrarily split chunks
"""
import codecs
import json
import logging
from typing import AsyncIterable, AsyncIterator, List, Optional, Union

from ..models.events import DecodedEvent, parse_event

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "


class SSEDecoder:
    """
    Incremental decoder for a single event stream.

    Chunk boundaries may fall anywhere, including inside a line or inside a
    multi-byte character. Only the unconsumed tail is kept between calls.
    A decoder serves one stream; create a new one per exchange.
    """

    def __init__(self):
        self._text_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._finished = False

    @property
    def pending(self) -> str:
        """Text received but not yet terminated by a newline."""
        return self._buffer

    def feed(self, chunk: Union[bytes, str]) -> List[DecodedEvent]:
        """
        Consume one chunk of the stream.

        Args:
            chunk: Raw bytes (or already decoded text) from the transport

        Returns:
            Events completed by this chunk, in stream order
        """
        if self._finished:
            raise RuntimeError("SSEDecoder already finished; use a new decoder per stream")
        if not chunk:
            return []

        if isinstance(chunk, bytes):
            self._buffer += self._text_decoder.decode(chunk)
        else:
            self._buffer += chunk

        lines = self._buffer.split("\n")
        self._buffer = lines.pop()

        events = []
        for line in lines:
            event = self._decode_line(line)
            if event is not None:
                events.append(event)
        return events

    def finish(self) -> List[DecodedEvent]:
        """
        Flush the stream tail once the transport has ended.

        Handles a final frame that was not followed by a newline.
        """
        if self._finished:
            return []
        self._finished = True

        self._buffer += self._text_decoder.decode(b"", final=True)
        tail, self._buffer = self._buffer, ""
        event = self._decode_line(tail)
        return [event] if event is not None else []

    def _decode_line(self, line: str) -> Optional[DecodedEvent]:
        if not line.startswith(DATA_PREFIX):
            return None

        data = line[len(DATA_PREFIX):].strip()
        if not data:
            return None

        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            logger.warning(f"[SSE] Failed to parse event: {data[:200]!r} ({e})")
            return None

        event = parse_event(payload)
        if event is not None:
            logger.debug(f"[SSE] {event.type}")
        return event


async def decode_stream(chunks: AsyncIterable[Union[bytes, str]]) -> AsyncIterator[DecodedEvent]:
    """
    Decode an async chunk source into events.

    Args:
        chunks: Async iterable of raw chunks, exhausted at stream end

    Yields:
        Decoded events in the order their lines appeared
    """
    decoder = SSEDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    for event in decoder.finish():
        yield event
