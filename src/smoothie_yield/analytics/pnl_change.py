"""Per-period P&L change bars.

A chart window is cut into buckets (days for ``1W``/``1M``, calendar months
for ``6M``). Every bucket is decomposed with the same building blocks as the
period breakdown: supply and backstop positions through
:func:`~smoothie_yield.analytics.breakdown.period_yield_breakdown` anchored at
the day before the bucket, debt positions through
:func:`~smoothie_yield.analytics.breakdown.borrow_breakdown` on a cost basis
that starts with the debt carried into the bucket. BLND emissions are
estimated from the position value and the daily emission APY.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import date
from typing import Literal

import pandas as pd

from ..core.constants import DAYS_PER_YEAR
from ..core.dates import add_days
from ..core.models import (
    BorrowBreakdown,
    PeriodYieldBreakdown,
    PnlChangePoint,
    PoolAssetKey,
    PositionLedger,
    TokenEvent,
)
from .breakdown import borrow_breakdown
from .cost_basis import compute_cost_basis

logger = logging.getLogger(__name__)

PnlPeriod = Literal["1W", "1M", "6M"]

DAILY_BARS = {"1W": 7, "1M": 30}
MONTHLY_BARS = 6

# Interest above this share of the average debt per day is treated as a data gap.
MAX_DAILY_INTEREST_RATIO = 0.01


@dataclass(frozen=True)
class PeriodBoundary:
    """Inclusive calendar range of one bar."""

    start: date
    end: date
    label: str

    @property
    def day_before(self) -> date:
        return add_days(self.start, -1)

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def days(self, live_fraction: float | None = None) -> float:
        """Length in days; a live bucket counts only the elapsed part of its last day."""

        full = (self.end - self.start).days + 1
        if live_fraction is None:
            return float(full)
        return max(0.01, full - 1 + live_fraction)


def granularity(period: str) -> Literal["daily", "monthly"]:
    return "monthly" if period == "6M" else "daily"


def period_boundaries(period: str, today: date) -> list[PeriodBoundary]:
    """Buckets of a chart window ending ``today``, oldest first.

    The last bucket always ends ``today``; for ``6M`` that cuts the current
    month short.
    """

    if period == "6M":
        starts = pd.date_range(end=pd.Timestamp(today), periods=MONTHLY_BARS, freq="MS")
        out = []
        for ts in starts:
            end = min((ts + pd.offsets.MonthEnd(0)).date(), today)
            out.append(PeriodBoundary(start=ts.date(), end=end, label=f"{ts:%b %Y}"))
        return out
    if period not in DAILY_BARS:
        raise ValueError(f"unknown P&L change period {period!r}")
    n = DAILY_BARS[period]
    days = [add_days(today, -i) for i in range(n - 1, -1, -1)]
    return [PeriodBoundary(start=d, end=d, label=f"{d:%b} {d.day}") for d in days]


def emission_estimate(
    value_at_start: float,
    deposits: Iterable[TokenEvent],
    withdrawals: Iterable[TokenEvent],
    apy_percent: float,
    start: date,
    elapsed_days: float,
) -> float:
    """USD value of BLND emitted to a position over a bucket.

    The value held at the start earns for the whole bucket; deposits and
    withdrawals add or remove value from their day onwards. Never negative.
    """

    if apy_percent <= 0 or elapsed_days <= 0:
        return 0.0
    daily = apy_percent / 100.0 / DAYS_PER_YEAR
    earned = max(0.0, value_at_start) * daily * elapsed_days
    for e in deposits:
        earned += e.usd_value * daily * max(0.0, elapsed_days - (e.date - start).days)
    for e in withdrawals:
        earned -= e.usd_value * daily * max(0.0, elapsed_days - (e.date - start).days)
    return max(0.0, earned)


def period_borrow_breakdown(
    key: PoolAssetKey,
    debt_at_start: float,
    debt_now: float,
    price_at_start: float,
    price_now: float,
    ledger: PositionLedger,
    boundary: PeriodBoundary,
    *,
    days: float | None = None,
) -> BorrowBreakdown | None:
    """Interest and price change of a debt position over one bucket.

    ``ledger`` holds borrows as deposits and repays as withdrawals, already
    limited to the bucket. Interest implausibly large for the debt carried
    (missing borrow events, usually) is dropped and logged.
    """

    if (debt_at_start <= 0 and debt_now <= 0) or price_now <= 0:
        return None
    start_price = price_at_start if price_at_start > 0 else price_now
    carried = [TokenEvent.priced(boundary.day_before, debt_at_start, start_price)] if debt_at_start > 0 else []
    basis = compute_cost_basis(
        [*carried, *ledger.deposits],
        ledger.withdrawals,
        price_now,
        today=boundary.end,
        key=key,
    )
    if basis is None:
        return None

    out = borrow_breakdown(debt_now, price_now, basis)
    span = days if days is not None else boundary.days()
    avg_debt = (max(0.0, debt_at_start) + max(0.0, debt_now)) / 2
    if abs(out.interest_accrued_tokens) > avg_debt * MAX_DAILY_INTEREST_RATIO * span:
        logger.warning(
            "Dropping implausible interest %.7f on %s in %s (debt %.7f -> %.7f)",
            out.interest_accrued_tokens,
            key,
            boundary.label,
            debt_at_start,
            debt_now,
        )
        out = replace(
            out,
            interest_accrued_tokens=0.0,
            interest_accrued_usd=0.0,
            total_cost_usd=out.price_change_on_debt_usd,
            total_cost_percent=(
                out.price_change_on_debt_usd / out.borrow_cost_basis_usd * 100.0
                if out.borrow_cost_basis_usd > 0
                else 0.0
            ),
        )
    return out


def pnl_change_point(
    boundary: PeriodBoundary,
    *,
    supply: Iterable[PeriodYieldBreakdown] = (),
    backstop: Iterable[PeriodYieldBreakdown] = (),
    borrow: Iterable[BorrowBreakdown] = (),
    supply_blnd_usd: float = 0.0,
    backstop_blnd_usd: float = 0.0,
    borrow_blnd_usd: float = 0.0,
    is_live: bool = False,
) -> PnlChangePoint:
    """Combine the breakdowns of one bucket into a bar."""

    supply = list(supply)
    backstop = list(backstop)
    borrow = list(borrow)
    supply_yield = math.fsum(b.protocol_yield_usd for b in supply)
    backstop_yield = math.fsum(b.protocol_yield_usd for b in backstop)
    interest = math.fsum(b.interest_accrued_usd for b in borrow)
    price_change = (
        math.fsum(b.price_change_usd for b in supply)
        + math.fsum(b.price_change_usd for b in backstop)
        - math.fsum(b.price_change_on_debt_usd for b in borrow)
    )
    total = (
        supply_yield
        + supply_blnd_usd
        + backstop_yield
        + backstop_blnd_usd
        - interest
        + borrow_blnd_usd
        + price_change
    )
    return PnlChangePoint(
        period=boundary.label,
        period_start=boundary.start,
        period_end=boundary.end,
        supply_yield_usd=supply_yield,
        supply_blnd_usd=supply_blnd_usd,
        backstop_yield_usd=backstop_yield,
        backstop_blnd_usd=backstop_blnd_usd,
        borrow_interest_cost_usd=interest,
        borrow_blnd_usd=borrow_blnd_usd,
        price_change_usd=price_change,
        total_usd=total,
        is_live=is_live,
    )


PNL_COMPONENTS = [
    "supply_yield_usd",
    "supply_blnd_usd",
    "backstop_yield_usd",
    "backstop_blnd_usd",
    "borrow_interest_cost_usd",
    "borrow_blnd_usd",
    "price_change_usd",
]


def pnl_change_frame(points: Sequence[PnlChangePoint]) -> pd.DataFrame:
    """Bars as a frame indexed by label with one column per component plus ``total_usd``."""

    columns = ["period", "period_start", "period_end", *PNL_COMPONENTS, "total_usd", "is_live"]
    frame = pd.DataFrame([{c: getattr(p, c) for c in columns} for p in points], columns=columns)
    return frame.set_index("period")


__all__ = [
    "DAILY_BARS",
    "MAX_DAILY_INTEREST_RATIO",
    "MONTHLY_BARS",
    "PNL_COMPONENTS",
    "PeriodBoundary",
    "PnlPeriod",
    "emission_estimate",
    "granularity",
    "period_borrow_breakdown",
    "period_boundaries",
    "pnl_change_frame",
    "pnl_change_point",
]
