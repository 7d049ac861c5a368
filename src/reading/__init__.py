"""Gated sequential reading module.

Provides:
- Per-page time tracking with a minimum and maximum dwell window
- Strict linear page unlocking
- Download eligibility once every page is completed
- Reading session audit log
"""

from .models import (
    READING_TABLES_CQL,
    PageState,
    ReadingProgress,
    ReadingSession,
    ReadingSummary,
)


__all__ = [
    "READING_TABLES_CQL",
    "PageState",
    "ReadingProgress",
    "ReadingSession",
    "ReadingSummary",
]
