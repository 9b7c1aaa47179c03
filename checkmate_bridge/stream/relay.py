"""
Stream Relay - Byte-for-byte forwarding of Checkmate event streams

Lets a browser UI read run progress through this service instead of calling
the backend cross-origin. Event bytes are forwarded untouched; consumers parse SSE
themselves.
"""
import logging
from typing import Any, AsyncIterator, Dict

import anyio
import httpx
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from ..utils.helpers import decode_body, preview_body
from .client import CheckmateClient

logger = logging.getLogger(__name__)

EVENT_STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class RelayResponse(StreamingResponse):
    """Event-stream response that always closes its body iterator."""

    media_type = "text/event-stream"

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            with anyio.CancelScope(shield=True):
                await self.body_iterator.aclose()


class StreamRelay:
    """
    Relays one upstream streaming response per call to ``forward``.

    The response mode is chosen once, before any byte goes downstream:
    either a single JSON error or an event stream.
    """

    def __init__(self, client: CheckmateClient):
        self.client = client

    async def forward(self, path: str, body: Dict[str, Any]) -> Response:
        """
        Open the upstream stream and build the downstream response.

        Args:
            path: Checkmate API path of the streaming endpoint
            body: JSON body for the upstream request

        Returns:
            A RelayResponse on success, otherwise a JSONResponse
        """
        try:
            upstream = await self.client.open_upstream(path, body)
        except Exception as e:
            logger.error(f"[Proxy] Error opening {path}: {e}")
            return JSONResponse(status_code=500, content={"error": str(e) or "Proxy error"})

        if not upstream.is_success:
            try:
                detail = decode_body(await upstream.aread())
            finally:
                await upstream.aclose()
            logger.error(
                f"[Proxy] Checkmate returned {upstream.status_code} for {path}: {preview_body(detail)}"
            )
            return JSONResponse(
                status_code=upstream.status_code,
                content={
                    "error": f"Checkmate API error: {upstream.reason_phrase}",
                    "detail": detail,
                },
            )

        logger.info(f"[Proxy] Relaying event stream from {path}")
        return RelayResponse(self.pump(upstream), headers=EVENT_STREAM_HEADERS)

    async def pump(self, upstream: httpx.Response) -> AsyncIterator[bytes]:
        """
        Yield upstream chunks as they arrive, with any content encoding removed.

        A downstream disconnect cancels or closes this generator; the
        ``finally`` block then aborts the upstream read.
        """
        forwarded = 0
        completed = False
        try:
            async for chunk in upstream.aiter_bytes():
                forwarded += len(chunk)
                yield chunk
            completed = True
        except httpx.RequestError as e:
            logger.warning(f"[Proxy] Upstream stream failed after {forwarded} bytes: {e}")
        finally:
            with anyio.CancelScope(shield=True):
                await upstream.aclose()
            if completed:
                logger.info(f"[Proxy] Upstream stream ended after {forwarded} bytes")
            else:
                logger.info(f"[Proxy] Upstream stream closed early after {forwarded} bytes")
