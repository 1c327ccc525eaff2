"""Shared date/time utilities used across the application."""

from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """Return a high-precision UTC timestamp with explicit ``Z`` marker.

    Format: ``2026-01-15T12:34:56.789012Z``
    """
    return to_utc_iso(utc_now())


def to_utc_iso(value: datetime) -> str:
    """Format an aware datetime as a ``Z``-suffixed ISO timestamp."""
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds").replace(
        "+00:00", "Z"
    )


def format_local(value: datetime | None, fmt: str = "%Y-%m-%d %H:%M:%S") -> str | None:
    """Format an aware datetime as local time, or ``None`` when unset."""
    if value is None:
        return None
    return value.astimezone().strftime(fmt)
