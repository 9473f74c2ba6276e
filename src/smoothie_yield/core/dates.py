"""Calendar-day helpers.

Every date that crosses a module boundary is a :class:`datetime.date` and is
rendered as ``YYYY-MM-DD`` only when serialised. "Today" is always resolved
from an explicit IANA timezone so that chart series and breakdown totals of
one request agree on the day boundary.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo

import pandas as pd


def today_in(timezone: str = "UTC", *, now: datetime | None = None) -> date:
    """Return the calendar day of ``now`` (default: current instant) in ``timezone``."""

    instant = now if now is not None else datetime.now(tz=UTC)
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=UTC)
    return instant.astimezone(ZoneInfo(timezone)).date()


def elapsed_day_fraction(timezone: str = "UTC", *, now: datetime | None = None) -> float:
    """Share of the current calendar day in ``timezone`` that has already passed."""

    instant = now if now is not None else datetime.now(tz=UTC)
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=UTC)
    local = instant.astimezone(ZoneInfo(timezone))
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return (local - midnight).total_seconds() / 86_400


def parse_date(value: date | datetime | str) -> date:
    """Coerce ``YYYY-MM-DD`` strings, ISO timestamps and datetimes to a date."""

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if "T" in text:
        text = text.split("T", 1)[0]
    return date.fromisoformat(text[:10])


def add_days(value: date, days: int) -> date:
    return value + timedelta(days=days)


def days_between(start: date, end: date) -> int:
    """Whole days from ``start`` to ``end``, never less than one."""

    return max(1, (end - start).days)


def calendar_index(start: date, end: date) -> pd.DatetimeIndex:
    """Daily index covering ``start``..``end`` inclusive (empty if start > end)."""

    if start > end:
        return pd.DatetimeIndex([], name="date")
    return pd.date_range(start=start, end=end, freq="D", name="date")


__all__ = [
    "add_days",
    "calendar_index",
    "days_between",
    "elapsed_day_fraction",
    "parse_date",
    "today_in",
]
