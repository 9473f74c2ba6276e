from __future__ import annotations

from datetime import UTC, date, datetime

import pytest

from smoothie_yield.core.dates import (
    add_days,
    calendar_index,
    days_between,
    elapsed_day_fraction,
    parse_date,
    today_in,
)


def test_today_in_respects_timezone() -> None:
    instant = datetime(2025, 1, 1, 3, 0, tzinfo=UTC)
    assert today_in("UTC", now=instant) == date(2025, 1, 1)
    assert today_in("America/New_York", now=instant) == date(2024, 12, 31)
    assert today_in("Asia/Tokyo", now=datetime(2025, 1, 1, 20, 0, tzinfo=UTC)) == date(2025, 1, 2)


def test_today_in_treats_naive_as_utc() -> None:
    assert today_in("UTC", now=datetime(2025, 6, 1, 23, 59)) == date(2025, 6, 1)


def test_parse_date_variants() -> None:
    assert parse_date("2025-02-03") == date(2025, 2, 3)
    assert parse_date("2025-02-03T18:30:00Z") == date(2025, 2, 3)
    assert parse_date(datetime(2025, 2, 3, 12)) == date(2025, 2, 3)
    assert parse_date(date(2025, 2, 3)) == date(2025, 2, 3)


def test_days_between_is_at_least_one() -> None:
    assert days_between(date(2025, 1, 1), date(2025, 1, 1)) == 1
    assert days_between(date(2025, 1, 1), date(2025, 1, 31)) == 30
    assert add_days(date(2025, 3, 1), -1) == date(2025, 2, 28)


def test_calendar_index_is_inclusive() -> None:
    idx = calendar_index(date(2025, 1, 30), date(2025, 2, 2))
    assert len(idx) == 4
    assert idx.name == "date"
    assert calendar_index(date(2025, 2, 2), date(2025, 1, 1)).empty


def test_elapsed_day_fraction_uses_local_midnight() -> None:
    instant = datetime(2025, 1, 1, 6, 0, tzinfo=UTC)
    assert elapsed_day_fraction("UTC", now=instant) == pytest.approx(0.25)
    assert elapsed_day_fraction("Asia/Tokyo", now=instant) == pytest.approx(15 / 24)
    assert elapsed_day_fraction("UTC", now=datetime(2025, 1, 1, 18, 0)) == pytest.approx(0.75)
