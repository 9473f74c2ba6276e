from __future__ import annotations

from datetime import date

import pytest

from smoothie_yield.analytics.breakdown import period_yield_breakdown
from smoothie_yield.analytics.pnl_change import (
    PNL_COMPONENTS,
    PeriodBoundary,
    emission_estimate,
    granularity,
    period_borrow_breakdown,
    period_boundaries,
    pnl_change_frame,
    pnl_change_point,
)
from smoothie_yield.core.models import BalanceSnapshot, PoolAssetKey, PositionLedger, TokenEvent

KEY = PoolAssetKey("POOL", "USDC")
LP = PoolAssetKey.backstop("POOL")
DAY = PeriodBoundary(start=date(2025, 6, 10), end=date(2025, 6, 10), label="Jun 10")


def _snap(key: PoolAssetKey, day: date, supply: float) -> BalanceSnapshot:
    return BalanceSnapshot(
        snapshot_date=day, pool_id=key.pool_id, asset_address=key.asset_address, supply_balance=supply
    )


def test_weekly_boundaries_are_daily_and_end_today() -> None:
    buckets = period_boundaries("1W", date(2025, 6, 30))
    assert len(buckets) == 7
    assert [b.label for b in buckets] == ["Jun 24", "Jun 25", "Jun 26", "Jun 27", "Jun 28", "Jun 29", "Jun 30"]
    assert all(b.start == b.end for b in buckets)
    assert buckets[-1].end == date(2025, 6, 30)
    assert buckets[0].day_before == date(2025, 6, 23)
    assert len(period_boundaries("1M", date(2025, 6, 30))) == 30


def test_six_month_boundaries_follow_calendar_months() -> None:
    buckets = period_boundaries("6M", date(2025, 6, 18))
    assert [b.label for b in buckets] == ["Jan 2025", "Feb 2025", "Mar 2025", "Apr 2025", "May 2025", "Jun 2025"]
    assert buckets[1].start == date(2025, 2, 1)
    assert buckets[1].end == date(2025, 2, 28)
    assert buckets[2].day_before == date(2025, 2, 28)
    # current month is cut at today
    assert buckets[-1].start == date(2025, 6, 1)
    assert buckets[-1].end == date(2025, 6, 18)
    assert period_boundaries("6M", date(2025, 6, 1))[-1].end == date(2025, 6, 1)


def test_unknown_period_is_rejected() -> None:
    with pytest.raises(ValueError):
        period_boundaries("3M", date(2025, 6, 30))
    assert granularity("6M") == "monthly"
    assert granularity("1W") == "daily"


def test_bucket_length_counts_elapsed_part_of_live_day() -> None:
    feb = period_boundaries("6M", date(2025, 6, 18))[1]
    june = period_boundaries("6M", date(2025, 6, 18))[-1]
    assert feb.days() == 28.0
    assert june.days(0.5) == pytest.approx(17.5)
    assert DAY.days(0.25) == pytest.approx(0.25)
    assert DAY.days(0.0) == pytest.approx(0.01)
    assert DAY.contains(date(2025, 6, 10))
    assert not DAY.contains(date(2025, 6, 11))


def test_emission_estimate_weights_events_by_remaining_days() -> None:
    start = date(2025, 6, 1)
    deposit = TokenEvent.priced(date(2025, 6, 5), 500.0, 1.0)
    withdrawal = TokenEvent.priced(date(2025, 6, 9), 200.0, 1.0)
    # 36.5% a year is 0.1% a day
    earned = emission_estimate(1000.0, [deposit], [withdrawal], 36.5, start, 10.0)
    assert earned == pytest.approx(10.0 + 3.0 - 0.4)


def test_emission_estimate_is_never_negative() -> None:
    start = date(2025, 6, 1)
    withdrawal = TokenEvent.priced(start, 200.0, 1.0)
    assert emission_estimate(0.0, [], [withdrawal], 36.5, start, 10.0) == 0.0
    assert emission_estimate(1000.0, [], [], 0.0, start, 10.0) == 0.0


def test_borrow_bucket_splits_interest_and_price_change() -> None:
    flat = period_borrow_breakdown(KEY, 1000.0, 1000.2, 1.0, 1.0, PositionLedger(), DAY)
    assert flat is not None
    assert flat.interest_accrued_tokens == pytest.approx(0.2)
    assert flat.interest_accrued_usd == pytest.approx(0.2)
    assert flat.price_change_on_debt_usd == pytest.approx(0.0)

    dearer = period_borrow_breakdown(KEY, 1000.0, 1000.2, 1.0, 1.1, PositionLedger(), DAY)
    assert dearer is not None
    assert dearer.interest_accrued_usd == pytest.approx(0.22)
    assert dearer.price_change_on_debt_usd == pytest.approx(100.0)


def test_borrow_bucket_counts_new_borrows_as_principal() -> None:
    ledger = PositionLedger(deposits=(TokenEvent.priced(DAY.start, 500.0, 1.0),))
    out = period_borrow_breakdown(KEY, 1000.0, 1500.3, 1.0, 1.0, ledger, DAY)
    assert out is not None
    assert out.net_borrowed_tokens == pytest.approx(1500.0)
    assert out.interest_accrued_tokens == pytest.approx(0.3)


def test_borrow_bucket_drops_implausible_interest(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level("WARNING", logger="smoothie_yield.analytics.pnl_change"):
        out = period_borrow_breakdown(KEY, 100.0, 300.0, 1.0, 1.2, PositionLedger(), DAY)
    assert out is not None
    assert out.interest_accrued_usd == 0.0
    assert out.price_change_on_debt_usd == pytest.approx(20.0)
    assert out.total_cost_usd == pytest.approx(20.0)
    assert "implausible interest" in caplog.text


def test_borrow_bucket_without_debt_or_price() -> None:
    assert period_borrow_breakdown(KEY, 0.0, 0.0, 1.0, 1.0, PositionLedger(), DAY) is None
    assert period_borrow_breakdown(KEY, 100.0, 100.1, 1.0, 0.0, PositionLedger(), DAY) is None
    # debt appearing without any recorded borrow has no basis to split
    assert period_borrow_breakdown(KEY, 0.0, 100.0, 1.0, 1.0, PositionLedger(), DAY) is None


def test_point_combines_sources_with_borrow_as_cost() -> None:
    supply = period_yield_breakdown(
        KEY, 1010.0, 1.0, [_snap(KEY, DAY.day_before, 1000.0)], DAY.day_before, price_at_start=1.0
    )
    backstop = period_yield_breakdown(
        LP, 100.0, 0.6, [_snap(LP, DAY.day_before, 100.0)], DAY.day_before, price_at_start=0.5
    )
    borrow = period_borrow_breakdown(KEY, 1000.0, 1000.2, 1.0, 1.0, PositionLedger(), DAY)
    assert supply is not None and backstop is not None and borrow is not None

    point = pnl_change_point(
        DAY,
        supply=[supply],
        backstop=[backstop],
        borrow=[borrow],
        supply_blnd_usd=1.5,
        backstop_blnd_usd=0.5,
        borrow_blnd_usd=0.25,
        is_live=True,
    )
    assert point.supply_yield_usd == pytest.approx(10.0)
    assert point.backstop_yield_usd == pytest.approx(0.0)
    assert point.borrow_interest_cost_usd == pytest.approx(0.2)
    assert point.price_change_usd == pytest.approx(10.0)
    assert point.total_usd == pytest.approx(10.0 + 1.5 + 0.5 - 0.2 + 0.25 + 10.0)

    payload = point.to_dict()
    assert payload["period"] == "Jun 10"
    assert payload["periodStart"] == "2025-06-10"
    assert payload["borrowInterestCostUsd"] == pytest.approx(0.2)
    assert payload["isLive"] is True


def test_empty_bucket_is_flat() -> None:
    point = pnl_change_point(DAY)
    assert point.total_usd == 0.0
    assert point.is_live is False


def test_frame_has_one_row_per_bar() -> None:
    points = [pnl_change_point(b) for b in period_boundaries("1W", date(2025, 6, 30))]
    frame = pnl_change_frame(points)
    assert list(frame.index) == [p.period for p in points]
    assert set(PNL_COMPONENTS) <= set(frame.columns)
    assert frame["total_usd"].sum() == 0.0
