"""Average-cost basis of a deposit/withdrawal ledger."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from datetime import date

from ..core.models import CostBasisRecord, PoolAssetKey, PositionLedger, TokenEvent

logger = logging.getLogger(__name__)


def reprice_same_day(deposits: Iterable[TokenEvent], today: date, today_price: float) -> list[TokenEvent]:
    """Replace the daily historical price of deposits made ``today`` with ``today_price``.

    Without a positive ``today_price`` the historical prices are kept.
    """

    if not today_price or today_price <= 0:
        return list(deposits)
    return [e.repriced(today_price) if e.date == today else e for e in deposits]


def compute_cost_basis(
    deposits: Iterable[TokenEvent],
    withdrawals: Iterable[TokenEvent],
    today_price: float,
    *,
    today: date,
    key: PoolAssetKey | None = None,
) -> CostBasisRecord | None:
    """Compute the average-cost basis of one position.

    Parameters
    ----------
    deposits, withdrawals:
        Priced events of the position. For debt positions pass borrows as
        ``deposits`` and repays as ``withdrawals``.
    today_price:
        Current USD price of the asset. Used for deposits dated ``today`` and
        as the average price when no deposit was recorded.
    today:
        Calendar day of the request.
    key:
        Optional pool-asset key copied onto the record.

    Returns
    -------
    CostBasisRecord | None
        ``None`` when the ledger holds no events at all. Withdrawals reduce the
        basis at the average deposit price, not at their own price.
    """

    deps = reprice_same_day(deposits, today, today_price)
    wds = list(withdrawals)
    if not deps and not wds:
        return None

    deposited_usd = math.fsum(e.usd_value for e in deps)
    deposited_tokens = math.fsum(e.tokens for e in deps)
    withdrawn_tokens = math.fsum(e.tokens for e in wds)

    avg_price = deposited_usd / deposited_tokens if deposited_tokens > 0 else float(today_price)
    net_tokens = deposited_tokens - withdrawn_tokens
    cost_basis = deposited_usd - withdrawn_tokens * avg_price

    if net_tokens < 0:
        logger.debug("Over-withdrawn position %s: net tokens %.7f", key, net_tokens)

    return CostBasisRecord(
        asset_address=key.asset_address if key else "",
        pool_id=key.pool_id if key else "",
        cost_basis_historical=cost_basis,
        weighted_avg_deposit_price=avg_price,
        net_deposited_tokens=net_tokens,
        total_deposited_usd=deposited_usd,
        total_deposited_tokens=deposited_tokens,
        total_withdrawn_tokens=withdrawn_tokens,
    )


def compute_cost_bases(
    ledgers: Mapping[PoolAssetKey, PositionLedger],
    prices: Mapping[str, float],
    *,
    today: date,
) -> dict[PoolAssetKey, CostBasisRecord]:
    """Apply :func:`compute_cost_basis` to every key, skipping empty ledgers."""

    records: dict[PoolAssetKey, CostBasisRecord] = {}
    for key in sorted(ledgers):
        ledger = ledgers[key]
        price = float(prices.get(key.asset_address, 0.0) or 0.0)
        record = compute_cost_basis(
            ledger.deposits, ledger.withdrawals, price, today=today, key=key
        )
        if record is not None:
            records[key] = record
    return records


def untracked_cost_basis(today_price: float, *, key: PoolAssetKey | None = None) -> CostBasisRecord:
    """Record for a balance that arrived outside tracked deposits (airdrop, migration).

    Nothing counts as deposited and the average price falls back to
    ``today_price``, so the whole current value reads as protocol yield.
    """

    return CostBasisRecord(
        asset_address=key.asset_address if key else "",
        pool_id=key.pool_id if key else "",
        cost_basis_historical=0.0,
        weighted_avg_deposit_price=float(today_price),
        net_deposited_tokens=0.0,
    )


def cost_basis_invariant_residual(record: CostBasisRecord) -> float:
    """``basis + withdrawn × avg − deposited``; zero for a consistent record."""

    return (
        record.cost_basis_historical
        + record.total_withdrawn_tokens * record.weighted_avg_deposit_price
        - record.total_deposited_usd
    )


__all__ = [
    "compute_cost_basis",
    "compute_cost_bases",
    "cost_basis_invariant_residual",
    "reprice_same_day",
    "untracked_cost_basis",
]
