"""Split position profit into protocol yield and price change."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date

import pandas as pd

from ..core.constants import ALL_TIME_START, PERIOD_DAYS
from ..core.dates import add_days, days_between
from ..core.models import (
    BalanceSnapshot,
    BorrowBreakdown,
    CostBasisRecord,
    HistoricalYieldBreakdown,
    PeriodYieldBreakdown,
    PoolAssetKey,
    PriceSource,
    TokenEvent,
)

logger = logging.getLogger(__name__)


def _pct(numerator: float, denominator: float) -> float:
    return numerator / denominator * 100.0 if denominator > 0 else 0.0


def historical_yield_breakdown(
    current_tokens: float,
    current_price: float,
    cost_basis: CostBasisRecord,
) -> HistoricalYieldBreakdown:
    """Since-inception decomposition of a lending or backstop position.

    ``current_tokens`` is the live balance reported by the SDK; the gap to
    ``cost_basis.net_deposited_tokens`` is the token growth from interest and
    emissions.
    """

    net = cost_basis.net_deposited_tokens
    avg = cost_basis.weighted_avg_deposit_price
    yield_tokens = current_tokens - net
    protocol_usd = yield_tokens * current_price
    price_change = net * (current_price - avg)
    total = protocol_usd + price_change
    return HistoricalYieldBreakdown(
        cost_basis_historical=cost_basis.cost_basis_historical,
        weighted_avg_deposit_price=avg,
        net_deposited_tokens=net,
        protocol_yield_tokens=yield_tokens,
        protocol_yield_usd=protocol_usd,
        price_change_usd=price_change,
        price_change_percent=_pct(current_price - avg, avg),
        current_value_usd=current_tokens * current_price,
        total_earned_usd=total,
        total_earned_percent=_pct(total, cost_basis.cost_basis_historical),
    )


def backstop_breakdown_without_events(
    lp_tokens: float,
    lp_price: float,
    cost_basis_lp: float = 0.0,
) -> HistoricalYieldBreakdown:
    """Breakdown of a backstop position for which no priced events exist.

    ``cost_basis_lp`` is the net deposited LP token count reported with the
    position; when it is not positive the whole balance counts as deposited.
    The deposit price is unknown, so the current LP price stands in for it and
    price change is zero.
    """

    net = cost_basis_lp if cost_basis_lp > 0 else lp_tokens
    yield_tokens = lp_tokens - net
    protocol_usd = yield_tokens * lp_price
    basis = net * lp_price
    return HistoricalYieldBreakdown(
        cost_basis_historical=basis,
        weighted_avg_deposit_price=lp_price,
        net_deposited_tokens=net,
        protocol_yield_tokens=yield_tokens,
        protocol_yield_usd=protocol_usd,
        price_change_usd=0.0,
        price_change_percent=0.0,
        current_value_usd=lp_tokens * lp_price,
        total_earned_usd=protocol_usd,
        total_earned_percent=_pct(protocol_usd, basis),
    )


def borrow_breakdown(
    current_debt_tokens: float,
    current_price: float,
    cost_basis: CostBasisRecord,
) -> BorrowBreakdown:
    """Decompose the cost of a debt position into accrued interest and price change.

    ``cost_basis`` is computed from borrows (as deposits) and repays (as
    withdrawals). A positive price change means the debt became more expensive.
    """

    net = cost_basis.net_deposited_tokens
    avg = cost_basis.weighted_avg_deposit_price
    interest_tokens = current_debt_tokens - net
    interest_usd = interest_tokens * current_price
    price_change = net * (current_price - avg)
    total = interest_usd + price_change
    return BorrowBreakdown(
        borrow_cost_basis_usd=cost_basis.cost_basis_historical,
        weighted_avg_borrow_price=avg,
        net_borrowed_tokens=net,
        interest_accrued_tokens=interest_tokens,
        interest_accrued_usd=interest_usd,
        price_change_on_debt_usd=price_change,
        price_change_percent=_pct(current_price - avg, avg),
        current_debt_tokens=current_debt_tokens,
        current_debt_usd=current_debt_tokens * current_price,
        total_cost_usd=total,
        total_cost_percent=_pct(total, cost_basis.cost_basis_historical),
    )


# ---------------------------------------------------------------------------
# Period variant
# ---------------------------------------------------------------------------


def period_start_date(period: str, today: date) -> date:
    """First day of a ``1W``/``1M``/``1Y``/``All`` window ending ``today``.

    Unknown period labels are treated as ``All``.
    """

    if period in PERIOD_DAYS:
        return add_days(today, -PERIOD_DAYS[period])
    if period == "1Y":
        try:
            return today.replace(year=today.year - 1)
        except ValueError:
            # 29 February
            return today.replace(year=today.year - 1, day=28)
    return ALL_TIME_START


def effective_period(
    period_start: date,
    earliest_deposit: date | None,
    today: date,
) -> tuple[date, int]:
    """Later of the requested start and the first deposit, plus its length in days."""

    start = period_start
    if earliest_deposit is not None and earliest_deposit > period_start:
        start = earliest_deposit
    return start, days_between(start, today)


def _latest_snapshot(
    history: Iterable[BalanceSnapshot],
    pool_id: str,
    day: date,
) -> BalanceSnapshot | None:
    latest: BalanceSnapshot | None = None
    for snap in history:
        if snap.pool_id != pool_id or snap.snapshot_date > day:
            continue
        if latest is None or snap.snapshot_date > latest.snapshot_date:
            latest = snap
    return latest


def balance_at(
    history: Iterable[BalanceSnapshot],
    pool_id: str,
    day: date,
) -> float:
    """Supply plus collateral of the latest snapshot on or before ``day`` (0 if none)."""

    latest = _latest_snapshot(history, pool_id, day)
    return latest.total if latest is not None else 0.0


def debt_at(
    history: Iterable[BalanceSnapshot],
    pool_id: str,
    day: date,
) -> float:
    latest = _latest_snapshot(history, pool_id, day)
    return latest.debt_balance if latest is not None else 0.0


def period_yield_breakdown(
    key: PoolAssetKey,
    tokens_now: float,
    price_now: float,
    balance_history: Iterable[BalanceSnapshot],
    period_start: date,
    *,
    price_at_start: float | None = None,
    price_source: PriceSource = "sdk_fallback",
    deposits_in_period: Iterable[TokenEvent] = (),
    withdrawals_in_period: Iterable[TokenEvent] = (),
) -> PeriodYieldBreakdown | None:
    """Decomposition of one position anchored at ``period_start``.

    Parameters
    ----------
    key:
        Position key. Backstop positions use the LP token address.
    tokens_now, price_now:
        Current balance and price. A closed position passes ``price_now <= 0``
        and is valued at ``price_at_start``.
    balance_history:
        End-of-day snapshots; the latest one on or before ``period_start``
        gives ``tokens_at_start``.
    price_at_start:
        Market price at ``period_start``. Defaults to the current price.
    deposits_in_period, withdrawals_in_period:
        Priced events. Only those dated strictly after ``period_start`` are
        counted, since the start snapshot already includes that day.

    Returns
    -------
    PeriodYieldBreakdown | None
        ``None`` when the position held nothing at either end of the window or
        no positive price is available.
    """

    tokens_at_start = balance_at(balance_history, key.pool_id, period_start)
    if tokens_now <= 0 and tokens_at_start <= 0:
        return None

    start_price = price_now if price_at_start is None else price_at_start
    effective_price = price_now
    if effective_price <= 0 and tokens_at_start > 0:
        effective_price = start_price
    if effective_price <= 0:
        logger.warning("No price for %s; skipping period breakdown", key)
        return None
    if start_price <= 0:
        start_price = effective_price

    deps = [e for e in deposits_in_period if e.date > period_start]
    wds = [e for e in withdrawals_in_period if e.date > period_start]
    net_in_period = math.fsum(e.tokens for e in deps) - math.fsum(e.tokens for e in wds)

    interest_tokens = tokens_now - tokens_at_start - net_in_period
    protocol_usd = interest_tokens * effective_price
    price_change = (
        tokens_at_start * (effective_price - start_price)
        + math.fsum(e.tokens * (effective_price - e.price_at_event) for e in deps)
        - math.fsum(e.tokens * (effective_price - e.price_at_event) for e in wds)
    )
    total = protocol_usd + price_change
    value_at_start = tokens_at_start * start_price
    return PeriodYieldBreakdown(
        key=key,
        tokens_at_start=tokens_at_start,
        tokens_now=tokens_now,
        net_deposited_in_period=net_in_period,
        interest_earned_tokens=interest_tokens,
        price_at_start=start_price,
        price_now=effective_price,
        price_source=price_source,
        value_at_start=value_at_start,
        value_now=tokens_now * effective_price,
        protocol_yield_usd=protocol_usd,
        price_change_usd=price_change,
        total_earned_usd=total,
        total_earned_percent=_pct(total, value_at_start),
    )


def period_totals(breakdowns: Iterable[PeriodYieldBreakdown]) -> dict[str, float]:
    """Sum period breakdowns; the percentage is relative to the value at start."""

    rows = list(breakdowns)
    value_at_start = math.fsum(b.value_at_start for b in rows)
    protocol = math.fsum(b.protocol_yield_usd for b in rows)
    price_change = math.fsum(b.price_change_usd for b in rows)
    total = protocol + price_change
    return {
        "valueAtStart": value_at_start,
        "valueNow": math.fsum(b.value_now for b in rows),
        "protocolYieldUsd": protocol,
        "priceChangeUsd": price_change,
        "totalEarnedUsd": total,
        "totalEarnedPercent": _pct(total, value_at_start),
    }


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

_SUM_COLUMNS = [
    "cost_basis_historical",
    "protocol_yield_usd",
    "price_change_usd",
    "total_earned_usd",
    "current_value_usd",
]


@dataclass(frozen=True)
class BreakdownSummary:
    """Per-position rows plus per-source and per-pool sub-totals.

    ``rows`` has one row per position with ``key``, ``pool_id``, ``source``
    (``pool`` or ``backstop``) and the USD columns. Every sub-total frame sums
    back to :attr:`totals`.
    """

    rows: pd.DataFrame
    by_source: pd.DataFrame
    by_pool: pd.DataFrame
    totals: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "totals": dict(self.totals),
            "bySource": self.by_source.reset_index().to_dict(orient="records"),
            "byPool": self.by_pool.reset_index().to_dict(orient="records"),
        }


def summarize_breakdowns(
    by_asset: Mapping[PoolAssetKey, HistoricalYieldBreakdown],
    by_backstop: Mapping[str, HistoricalYieldBreakdown] | None = None,
) -> BreakdownSummary:
    """Aggregate lending and backstop breakdowns along three dimensions."""

    records: list[dict[str, object]] = []
    for key, b in sorted(by_asset.items()):
        records.append({"key": key.composite, "pool_id": key.pool_id, "source": "pool", **_usd(b)})
    for pool_id, b in sorted((by_backstop or {}).items()):
        records.append({"key": pool_id, "pool_id": pool_id, "source": "backstop", **_usd(b)})

    rows = pd.DataFrame(records, columns=["key", "pool_id", "source", *_SUM_COLUMNS])
    rows[_SUM_COLUMNS] = rows[_SUM_COLUMNS].astype(float)
    by_source = rows.groupby("source")[_SUM_COLUMNS].sum()
    by_pool = rows.groupby("pool_id")[_SUM_COLUMNS].sum()

    totals = {col: float(math.fsum(rows[col])) for col in _SUM_COLUMNS}
    totals["total_earned_percent"] = _pct(totals["total_earned_usd"], totals["cost_basis_historical"])
    return BreakdownSummary(rows=rows, by_source=by_source, by_pool=by_pool, totals=totals)


def _usd(b: HistoricalYieldBreakdown) -> dict[str, float]:
    return {col: float(getattr(b, col)) for col in _SUM_COLUMNS}


__all__ = [
    "BreakdownSummary",
    "backstop_breakdown_without_events",
    "balance_at",
    "borrow_breakdown",
    "debt_at",
    "effective_period",
    "historical_yield_breakdown",
    "period_start_date",
    "period_totals",
    "period_yield_breakdown",
    "summarize_breakdowns",
]
