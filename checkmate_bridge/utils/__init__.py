"""Utilities package"""
from .helpers import decode_body, format_duration, preview_body, timestamp_now

__all__ = ["decode_body", "format_duration", "preview_body", "timestamp_now"]
