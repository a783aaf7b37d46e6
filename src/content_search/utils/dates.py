"""Timestamp helpers shared by the store, the analytics layer and the API."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Any


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(raw: Any, *, end_of_day: bool = False) -> datetime | None:  # noqa: ANN401
    """Parse a query-string or YAML timestamp into an aware UTC datetime.

    Accepts full ISO-8601 timestamps, plain ``YYYY-MM-DD`` dates, and
    :class:`date` / :class:`datetime` objects (YAML loads both natively).

    Args:
        raw:        Value to parse. Empty values yield ``None``.
        end_of_day: For date-only input, return 23:59:59.999999 instead of
                    midnight, so ``dateEnd=2024-05-01`` includes that day.

    Returns:
        Aware UTC datetime or ``None`` when *raw* is empty.

    Raises:
        ValueError: If *raw* is non-empty but not a recognisable date.
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return ensure_utc(raw)
    if isinstance(raw, date):
        return datetime.combine(raw, time.max if end_of_day else time.min, tzinfo=timezone.utc)

    raw_str = str(raw).strip()
    if len(raw_str) == 10:
        parsed_date = date.fromisoformat(raw_str)
        return datetime.combine(
            parsed_date, time.max if end_of_day else time.min, tzinfo=timezone.utc
        )
    # fromisoformat() only learned the trailing "Z" in 3.11.
    if raw_str.endswith("Z"):
        raw_str = raw_str[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(raw_str))


def days_between(start: datetime, end: datetime, max_days: int = 366) -> list[date]:
    """Return every calendar day (UTC) from *start* to *end*, inclusive.

    The range is capped at the last *max_days* days to bound per-day lookups.
    """
    first = ensure_utc(start).date()
    last = ensure_utc(end).date()
    if last < first:
        return []
    first = max(first, last - timedelta(days=max_days - 1))
    return [first + timedelta(days=offset) for offset in range((last - first).days + 1)]
