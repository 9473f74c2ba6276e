"""Realized yield, ROI and densified cumulative series from a transaction ledger.

Realized P&L is cash-flow based throughout: ``withdrawn - deposited`` where
claims count as withdrawn. The claims-only running total is exposed as the
separate ``cumulative_claimed`` column.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any

import pandas as pd

from ..core.constants import BLND_TOKEN_ADDRESS, DAYS_PER_YEAR, LP_TOKEN_ADDRESS
from ..core.dates import calendar_index, today_in
from ..core.models import (
    EmissionTotals,
    PriceSource,
    RealizedYieldTotals,
    SourceTotals,
    Transaction,
    UserAction,
)

logger = logging.getLogger(__name__)

# (token, day, fallback) -> (price, source), e.g. PriceBook.resolve
PriceResolver = Callable[[str, date, float], tuple[float, PriceSource]]

SERIES_COLUMNS = [
    "cumulative_deposited",
    "cumulative_withdrawn",
    "cumulative_realized",
    "cumulative_claimed",
]
POOL_SERIES_COLUMNS = ["lending_claimed", "backstop_claimed"]
SOURCES = ("pool", "backstop")

# action_type -> (transaction type, source)
ACTION_CLASSIFICATION: dict[str, tuple[str, str]] = {
    "supply": ("deposit", "pool"),
    "supply_collateral": ("deposit", "pool"),
    "withdraw": ("withdraw", "pool"),
    "withdraw_collateral": ("withdraw", "pool"),
    "claim": ("claim", "pool"),
    "backstop_deposit": ("deposit", "backstop"),
    "backstop_withdraw": ("withdraw", "backstop"),
    "backstop_claim": ("claim", "backstop"),
}


@dataclass(frozen=True)
class RealizedYieldReport:
    """Totals, cumulative series and the transactions they were built from.

    ``timeseries`` and every frame of ``by_source`` carry
    :data:`SERIES_COLUMNS` on a daily ``date`` index. ``by_pool`` frames carry
    :data:`POOL_SERIES_COLUMNS` built from claims only.
    """

    totals: RealizedYieldTotals
    timeseries: pd.DataFrame
    by_source: dict[str, pd.DataFrame] = field(default_factory=dict)
    by_pool: dict[str, pd.DataFrame] = field(default_factory=dict)
    pool_names: dict[str, str | None] = field(default_factory=dict)
    transactions: tuple[Transaction, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.transactions

    def to_dict(self) -> dict[str, Any]:
        data = self.totals.to_dict()
        data["cumulativeRealized"] = _records(self.timeseries)
        data["cumulativeBySource"] = {src: _records(df) for src, df in self.by_source.items()}
        data["cumulativeByPool"] = [
            {
                "poolId": pool_id,
                "poolName": self.pool_names.get(pool_id),
                "timeSeries": _records(df),
            }
            for pool_id, df in self.by_pool.items()
        ]
        data["transactions"] = [tx.to_dict() for tx in self.transactions]
        return data


def _records(frame: pd.DataFrame) -> list[dict[str, Any]]:
    if frame.empty:
        return []
    out = frame.reset_index()
    out["date"] = out["date"].dt.strftime("%Y-%m-%d")
    out.columns = [_camel(c) for c in out.columns]
    return out.to_dict(orient="records")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _empty_series(columns: list[str]) -> pd.DataFrame:
    return pd.DataFrame(columns=columns, index=pd.DatetimeIndex([], name="date"), dtype=float)


def transactions_frame(transactions: Iterable[Transaction]) -> pd.DataFrame:
    """Flat pandas view of a transaction list (one row per transaction)."""

    rows = [
        {
            "date": pd.Timestamp(tx.date),
            "type": tx.type,
            "source": tx.source,
            "pool_id": tx.pool_id,
            "pool_name": tx.pool_name,
            "asset": tx.asset,
            "amount": float(tx.amount),
            "value_usd": float(tx.value_usd),
        }
        for tx in transactions
    ]
    columns = ["date", "type", "source", "pool_id", "pool_name", "asset", "amount", "value_usd"]
    return pd.DataFrame(rows, columns=columns)


def cumulative_series(frame: pd.DataFrame, today: date) -> pd.DataFrame:
    """Daily cumulative deposited/withdrawn/realized/claimed from the first row to ``today``.

    Days without activity carry the previous cumulative values forward.
    """

    if frame.empty:
        return _empty_series(SERIES_COLUMNS)

    value = frame["value_usd"]
    daily = pd.DataFrame(
        {
            "date": frame["date"],
            "cumulative_deposited": value.where(frame["type"] == "deposit", 0.0),
            "cumulative_withdrawn": value.where(frame["type"] != "deposit", 0.0),
            "cumulative_claimed": value.where(frame["type"] == "claim", 0.0),
        }
    ).groupby("date").sum()

    end = max(pd.Timestamp(today), daily.index.max())
    idx = calendar_index(daily.index.min().date(), end.date())
    out = daily.reindex(idx, fill_value=0.0).cumsum()
    out["cumulative_realized"] = out["cumulative_withdrawn"] - out["cumulative_deposited"]
    return out[SERIES_COLUMNS]


def pool_claim_series(frame: pd.DataFrame, today: date) -> dict[str, pd.DataFrame]:
    """Per-pool cumulative claim value split into lending and backstop claims."""

    claims = frame[frame["type"] == "claim"]
    out: dict[str, pd.DataFrame] = {}
    for pool_id, group in claims.groupby("pool_id", sort=False):
        daily = group.pivot_table(
            index="date", columns="source", values="value_usd", aggfunc="sum", fill_value=0.0
        ).reindex(columns=list(SOURCES), fill_value=0.0)
        end = max(pd.Timestamp(today), daily.index.max())
        idx = calendar_index(daily.index.min().date(), end.date())
        series = daily.reindex(idx, fill_value=0.0).cumsum()
        series.columns = POOL_SERIES_COLUMNS
        series.columns.name = None
        out[str(pool_id)] = series.astype(float)
    return out


def annualized_roi(roi_percent: float | None, days_active: int) -> float | None:
    """``((1 + roi)^(365 / days) - 1) × 100``.

    ``None`` when the base is not positive or the result leaves the float range.
    """

    if roi_percent is None or days_active <= 0:
        return None
    roi = roi_percent / 100.0
    if roi <= -1:
        return None
    try:
        return (math.pow(1.0 + roi, DAYS_PER_YEAR / days_active) - 1.0) * 100.0
    except OverflowError:
        return None


def _source_totals(frame: pd.DataFrame) -> SourceTotals:
    deposited = float(frame.loc[frame["type"] == "deposit", "value_usd"].sum())
    withdrawn = float(frame.loc[frame["type"] != "deposit", "value_usd"].sum())
    return SourceTotals(deposited=deposited, withdrawn=withdrawn, realized=withdrawn - deposited)


def compute_realized_yield(
    transactions: Iterable[Transaction],
    *,
    today: date,
) -> RealizedYieldReport:
    """Aggregate a user's transactions into realized totals and chart series.

    Parameters
    ----------
    transactions:
        Deposits, withdrawals and claims from pools and the backstop, in any
        order.
    today:
        Last day of every densified series.

    Returns
    -------
    RealizedYieldReport
        Zeroed totals with ``None`` ROI and empty series for an empty ledger.
    """

    txs = tuple(sorted(transactions, key=lambda t: t.date))
    frame = transactions_frame(txs)
    if frame.empty:
        return RealizedYieldReport(totals=RealizedYieldTotals(), timeseries=_empty_series(SERIES_COLUMNS))

    overall = _source_totals(frame)
    claims = frame[frame["type"] == "claim"]
    emissions = EmissionTotals(
        blnd_claimed=float(claims.loc[claims["source"] == "pool", "amount"].sum()),
        lp_claimed=float(claims.loc[claims["source"] == "backstop", "amount"].sum()),
        usd_value=float(claims["value_usd"].sum()),
    )

    first = txs[0].date
    last = txs[-1].date
    days_active = max(1, (last - first).days)
    roi = overall.realized / overall.deposited * 100.0 if overall.deposited > 0 else None

    totals = RealizedYieldTotals(
        total_deposited_usd=overall.deposited,
        total_withdrawn_usd=overall.withdrawn,
        realized_pnl=overall.realized,
        pools=_source_totals(frame[frame["source"] == "pool"]),
        backstop=_source_totals(frame[frame["source"] == "backstop"]),
        emissions=emissions,
        roi_percent=roi,
        annualized_roi_percent=annualized_roi(roi, days_active),
        days_active=days_active,
        first_activity_date=first,
        last_activity_date=last,
    )

    by_source = {
        src: cumulative_series(frame[frame["source"] == src], today)
        for src in SOURCES
        if (frame["source"] == src).any()
    }
    names = claims.dropna(subset=["pool_name"]).groupby("pool_id")["pool_name"].first()
    by_pool = pool_claim_series(frame, today)
    return RealizedYieldReport(
        totals=totals,
        timeseries=cumulative_series(frame, today),
        by_source=by_source,
        by_pool=by_pool,
        pool_names={pool_id: names.get(pool_id) for pool_id in by_pool},
        transactions=txs,
    )


def reconcile_realized(report: RealizedYieldReport) -> dict[str, float]:
    """Residuals between the report's aggregation dimensions (all ~0 when consistent)."""

    def last(frame: pd.DataFrame, column: str) -> float:
        return float(frame[column].iloc[-1]) if not frame.empty else 0.0

    t = report.totals
    claimed = last(report.timeseries, "cumulative_claimed")
    pool_claims = math.fsum(
        last(df, "lending_claimed") + last(df, "backstop_claimed") for df in report.by_pool.values()
    )
    return {
        "series_vs_total": last(report.timeseries, "cumulative_realized") - t.realized_pnl,
        "sources_vs_total": t.pools.realized + t.backstop.realized - t.realized_pnl,
        "source_series_vs_total": math.fsum(
            last(df, "cumulative_realized") for df in report.by_source.values()
        )
        - t.realized_pnl,
        "pools_vs_claims": pool_claims - claimed,
        "emissions_vs_claims": t.emissions.usd_value - claimed,
    }


def transactions_from_actions(
    actions: Iterable[UserAction],
    resolve_price: PriceResolver,
    *,
    sdk_prices: Mapping[str, float] | None = None,
    timezone: str = "UTC",
) -> list[Transaction]:
    """Classify store actions into priced deposit/withdraw/claim transactions.

    Pool claims are priced in BLND and every backstop action in LP tokens.
    Borrow, repay, liquidation and queue actions do not move realized yield
    and are dropped.
    """

    fallbacks = sdk_prices or {}
    out: list[Transaction] = []
    for action in actions:
        kind = ACTION_CLASSIFICATION.get(action.action_type)
        if kind is None:
            continue
        tx_type, source = kind
        if source == "backstop":
            token, label = LP_TOKEN_ADDRESS, "BLND-USDC LP"
        elif tx_type == "claim":
            token, label = BLND_TOKEN_ADDRESS, "BLND"
        else:
            token = action.asset_address or ""
            label = action.asset_symbol or token
        day = today_in(timezone, now=action.ledger_closed_at)
        price, _ = resolve_price(token, day, fallbacks.get(token, 0.0))
        if price <= 0:
            logger.warning("No USD price for %s on %s (tx %s)", token, day, action.transaction_hash)
        amount = abs(action.amount)
        out.append(
            Transaction(
                date=day,
                type=tx_type,  # type: ignore[arg-type]
                source=source,  # type: ignore[arg-type]
                asset=label,
                asset_address=token or None,
                amount=amount,
                price_usd=price,
                value_usd=amount * price,
                tx_hash=action.transaction_hash,
                pool_id=action.pool_id,
                pool_name=action.pool_name,
            )
        )
    out.sort(key=lambda t: t.date)
    return out


__all__ = [
    "ACTION_CLASSIFICATION",
    "POOL_SERIES_COLUMNS",
    "PriceResolver",
    "RealizedYieldReport",
    "SERIES_COLUMNS",
    "annualized_roi",
    "compute_realized_yield",
    "cumulative_series",
    "pool_claim_series",
    "reconcile_realized",
    "transactions_frame",
    "transactions_from_actions",
]
