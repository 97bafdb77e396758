from __future__ import annotations

from datetime import date, datetime, timezone


def utc_now() -> datetime:
    """Return the current UTC datetime with timezone info."""
    return datetime.now(tz=timezone.utc)


def isoformat(dt: datetime | None) -> str | None:
    return dt.astimezone(timezone.utc).isoformat() if dt else None


def long_date(value: date | datetime) -> str:
    """Render a calendar date the long way, e.g. ``October 19, 2026``."""
    return f"{value.strftime('%B')} {value.day}, {value.year}"
