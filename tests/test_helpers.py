"""Tests for report and logging helpers."""

from __future__ import annotations

from datetime import datetime

from checkmate_bridge.utils.helpers import decode_body, format_duration, preview_body, timestamp_now


class TestFormatDuration:
    def test_milliseconds(self):
        assert format_duration(250) == "250ms"

    def test_seconds(self):
        assert format_duration(1500) == "1.5s"

    def test_minutes_never_show_sixty_seconds(self):
        assert format_duration(125_000) == "2m 5s"
        assert format_duration(119_999) == "1m 59s"

    def test_missing_or_fractional_values(self):
        assert format_duration(None) == "0ms"
        assert format_duration(-5) == "0ms"
        assert format_duration(249.6) == "250ms"


class TestBodies:
    def test_decode_body_replaces_invalid_utf8(self):
        assert decode_body(b"caf\xc3\xa9 \xff") == "café �"
        assert decode_body(None) == ""
        assert decode_body("already text") == "already text"

    def test_preview_collapses_whitespace(self):
        assert preview_body(b"Traceback:\n  line 1\n\n  boom") == "Traceback: line 1 boom"

    def test_preview_is_cut_to_length(self):
        preview = preview_body("x" * 500, max_length=20)
        assert len(preview) == 20
        assert preview.endswith("...")


class TestTimestamp:
    def test_utc_iso_format(self):
        stamp = timestamp_now()
        assert stamp.endswith("Z")
        parsed = datetime.fromisoformat(stamp[:-1])
        assert parsed.microsecond % 1000 == 0
