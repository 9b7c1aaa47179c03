"""
Utility helper functions
"""
from datetime import datetime, timezone
from typing import Optional, Union


def format_duration(ms: Optional[float]) -> str:
    """
    Format a step or run duration for the text report.

    Args:
        ms: Duration in milliseconds as reported by the backend. None and
            negative values count as zero

    Returns:
        "250ms", "1.5s" or "2m 5s"
    """
    ms = max(int(round(ms or 0)), 0)
    if ms < 1000:
        return f"{ms}ms"
    if ms < 60000:
        return f"{ms / 1000:.1f}s"
    minutes, rest = divmod(ms, 60000)
    return f"{minutes}m {rest // 1000}s"


def decode_body(body: Union[bytes, str, None]) -> str:
    """Decode an upstream response body, replacing invalid UTF-8."""
    if body is None:
        return ""
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="replace")
    return body


def preview_body(body: Union[bytes, str, None], max_length: int = 200) -> str:
    """
    Collapse an upstream error body into one short line for log messages.

    Args:
        body: Raw or decoded response body
        max_length: Maximum length of the preview

    Returns:
        Whitespace-collapsed text, cut with "..." when too long
    """
    text = " ".join(decode_body(body).split())
    if len(text) <= max_length:
        return text
    return text[:max_length - 3] + "..."


def timestamp_now() -> str:
    """Current UTC time as ISO 8601 with millisecond precision and a ``Z`` suffix."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")
