"""Shared utility functions for cadence."""

from __future__ import annotations

from datetime import UTC, datetime


def to_millis(value: datetime) -> int:
    """Epoch milliseconds for a datetime.

    Naive datetimes (SQLite drops tzinfo on the way back) are treated as UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(value.timestamp() * 1000)


def preview_title(content: str, limit: int = 34) -> str:
    """Conversation title derived from the first user message."""
    if len(content) > limit:
        return content[: limit - 1] + "…"
    return content
