"""Request orchestration for Smoothie.

Per-wallet repository reads run in parallel and are always awaited together
before anything is merged; a failed read fails the request. Batch entry points
instead report failures per wallet. "Today" is resolved once per request from
its timezone and passed to every calculator.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Generic, TypeVar

from ..analytics.apy import (
    backstop_rates_to_samples,
    daily_rates_to_samples,
    rates_to_apy,
    share_rates_to_apy,
)
from ..analytics.breakdown import (
    BreakdownSummary,
    backstop_breakdown_without_events,
    balance_at,
    borrow_breakdown,
    debt_at,
    effective_period,
    historical_yield_breakdown,
    period_start_date,
    period_totals,
    period_yield_breakdown,
    summarize_breakdowns,
)
from ..analytics.cost_basis import compute_cost_basis, compute_cost_bases, untracked_cost_basis
from ..analytics.merge import merge_across_wallets
from ..analytics.pnl_change import (
    PeriodBoundary,
    emission_estimate,
    granularity,
    period_borrow_breakdown,
    period_boundaries,
    pnl_change_point,
)
from ..analytics.realized import RealizedYieldReport, compute_realized_yield, transactions_from_actions
from ..core.constants import (
    BLND_TOKEN_ADDRESS,
    BORROW_ACTIONS,
    LP_TOKEN_ADDRESS,
    PRICE_SOURCES,
    REPAY_ACTIONS,
    SUPPLY_ACTIONS,
    WITHDRAW_ACTIONS,
)
from ..core.dates import elapsed_day_fraction, today_in
from ..core.models import (
    ApyDataPoint,
    BackstopPosition,
    BalanceSnapshot,
    BorrowBreakdown,
    CostBasisRecord,
    EmissionApyHistory,
    HistoricalYieldBreakdown,
    PeriodYieldBreakdown,
    PnlChangePoint,
    PoolAssetKey,
    PositionLedger,
    PositionSnapshot,
    PriceSource,
    Transaction,
)
from ..core.repositories import EventRepository, pool_asset_pairs
from ..requests import (
    ApyHistoryRequest,
    CostBasisRequest,
    EmissionApyRequest,
    PeriodRequest,
    PnlChangeRequest,
    RealizedYieldRequest,
)
from .cache import TTLCache

logger = logging.getLogger(__name__)

T = TypeVar("T")

ACTION_LIMIT = 1000
REALIZED_ACTION_LIMIT = 10_000

Ledgers = dict[PoolAssetKey, PositionLedger]


@dataclass(frozen=True)
class PortfolioBreakdown:
    """Since-inception breakdown of every open lending and backstop position."""

    cost_basis: dict[PoolAssetKey, CostBasisRecord]
    by_asset: dict[PoolAssetKey, HistoricalYieldBreakdown]
    by_backstop: dict[str, HistoricalYieldBreakdown]
    summary: BreakdownSummary
    today: date

    def to_dict(self) -> dict[str, Any]:
        return {
            "costBasis": {k.composite: r.to_dict() for k, r in self.cost_basis.items()},
            "byAsset": {k.composite: b.to_dict() for k, b in self.by_asset.items()},
            "byBackstop": {p: b.to_dict() for p, b in self.by_backstop.items()},
            **self.summary.to_dict(),
            "today": self.today.isoformat(),
        }


@dataclass(frozen=True)
class PeriodBreakdownResult:
    by_asset: dict[PoolAssetKey, PeriodYieldBreakdown]
    by_backstop: dict[str, PeriodYieldBreakdown]
    totals: dict[str, float]
    period_start: date
    period_days: int
    earliest_deposit: date | None = None
    price_source_counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "byAsset": {k.composite: b.to_dict() for k, b in self.by_asset.items()},
            "byBackstop": {p: b.to_dict() for p, b in self.by_backstop.items()},
            "totals": dict(self.totals),
            "periodStartDate": self.period_start.isoformat(),
            "periodDays": self.period_days,
            "debug": {
                "assetCount": len(self.by_asset),
                "backstopCount": len(self.by_backstop),
                "priceSourceCounts": dict(self.price_source_counts),
                "earliestDepositDate": self.earliest_deposit.isoformat() if self.earliest_deposit else None,
            },
        }


@dataclass(frozen=True)
class PnlChangeChart:
    points: list[PnlChangePoint]
    period_type: str
    granularity: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": [p.to_dict() for p in self.points],
            "periodType": self.period_type,
            "granularity": self.granularity,
        }


@dataclass(frozen=True)
class _ChartInputs:
    supply: Ledgers
    borrow: Ledgers
    backstop: Ledgers
    histories: dict[str, dict[str, list[BalanceSnapshot]]]


@dataclass(frozen=True)
class BatchItem(Generic[T]):
    """Per-wallet outcome of a batch call: a result or an error message."""

    wallet: str
    result: T | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class PortfolioResult:
    breakdown: PortfolioBreakdown
    realized: RealizedYieldReport
    borrow: dict[PoolAssetKey, BorrowBreakdown] = field(default_factory=dict)


def _sum_by_key(
    positions: Iterable[PositionSnapshot], amount: Callable[[PositionSnapshot], float]
) -> dict[PoolAssetKey, tuple[float, float]]:
    """``key -> (summed amount, price)`` across wallets reporting the same key."""

    out: dict[PoolAssetKey, tuple[float, float]] = {}
    for pos in positions:
        tokens, price = out.get(pos.key, (0.0, 0.0))
        out[pos.key] = (tokens + float(amount(pos) or 0.0), float(pos.usd_price or price))
    return out


class YieldPipeline:
    """Drive repository reads, wallet merging and the calculators for one user request.

    Parameters
    ----------
    repository:
        Any :class:`EventRepository`. Reads must be safe to issue from worker
        threads.
    cache:
        Optional :class:`TTLCache` for APY histories and realized reports.
    max_workers:
        Upper bound on concurrent per-wallet reads.
    today:
        Pin the request day (tests, replays). By default it is resolved from
        each request's timezone.
    """

    def __init__(
        self,
        repository: EventRepository,
        *,
        cache: TTLCache | None = None,
        max_workers: int = 8,
        today: date | None = None,
    ) -> None:
        self.repository = repository
        self.cache = cache
        self.max_workers = max_workers
        self._today = today

    def resolve_today(self, timezone: str = "UTC") -> date:
        return self._today or today_in(timezone)

    # -- fan-out -------------------------------------------------------

    def _submit(self, pool: ThreadPoolExecutor, fn: Callable[[str], T], wallets: Sequence[str]) -> dict[str, Future[T]]:
        return {w: pool.submit(fn, w) for w in wallets}

    def _fan_out(self, fn: Callable[[str], T], wallets: Sequence[str]) -> dict[str, T]:
        """Run ``fn`` per wallet; return once every call settled, re-raising the first failure."""

        workers = max(1, min(self.max_workers, len(wallets)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = self._submit(pool, fn, wallets)
            wait(futures.values())
        return {w: f.result() for w, f in futures.items()}

    # -- repository reads ----------------------------------------------

    def fetch_ledgers(self, wallets: Sequence[str], sdk_prices: Mapping[str, float]) -> dict[str, Ledgers]:
        """Priced supply/withdraw ledgers per wallet and pool-asset key."""

        repo = self.repository

        def one(wallet: str) -> Ledgers:
            actions = repo.get_user_actions(
                wallet, action_types=SUPPLY_ACTIONS | WITHDRAW_ACTIONS, limit=ACTION_LIMIT
            )
            pairs = pool_asset_pairs(reversed(actions))
            return repo.get_deposit_events_with_prices_batch(wallet, pairs, sdk_prices)

        return self._fan_out(one, wallets)

    def fetch_borrow_ledgers(self, wallets: Sequence[str], sdk_prices: Mapping[str, float]) -> dict[str, Ledgers]:
        """Priced borrow (as deposits) / repay (as withdrawals) ledgers per wallet."""

        repo = self.repository

        def one(wallet: str) -> Ledgers:
            actions = repo.get_user_actions(
                wallet, action_types=BORROW_ACTIONS | REPAY_ACTIONS, limit=ACTION_LIMIT
            )
            pairs = pool_asset_pairs(reversed(actions))
            return repo.get_borrow_events_with_prices_batch(wallet, pairs, sdk_prices)

        return self._fan_out(one, wallets)

    def fetch_backstop_ledgers(self, wallets: Sequence[str], lp_price: float) -> dict[str, Ledgers]:
        """Backstop LP ledgers per wallet, keyed by the pool's LP-token key."""

        repo = self.repository

        def one(wallet: str) -> Ledgers:
            by_pool = repo.get_backstop_events_with_prices(wallet, lp_price)
            return {PoolAssetKey.backstop(pool_id): ledger for pool_id, ledger in by_pool.items()}

        return self._fan_out(one, wallets)

    def fetch_transactions(
        self,
        wallets: Sequence[str],
        sdk_prices: Mapping[str, float],
        timezone: str = "UTC",
    ) -> dict[str, list[Transaction]]:
        repo = self.repository

        def one(wallet: str) -> list[Transaction]:
            actions = repo.get_user_actions(wallet, limit=REALIZED_ACTION_LIMIT)
            return transactions_from_actions(
                actions, repo.get_historical_price, sdk_prices=sdk_prices, timezone=timezone
            )

        return self._fan_out(one, wallets)

    # -- since inception -----------------------------------------------

    def cost_basis(
        self,
        request: CostBasisRequest,
        prices: Mapping[str, float] | None = None,
    ) -> dict[PoolAssetKey, CostBasisRecord]:
        """Merged multi-wallet cost basis per pool-asset key."""

        today = self.resolve_today(request.timezone)
        per_wallet = self.fetch_ledgers(request.user_addresses, request.sdk_prices)
        merged = merge_across_wallets(per_wallet, request.active_wallets or None)
        return compute_cost_bases(merged, prices or request.sdk_prices, today=today)

    def historical_breakdown(
        self,
        request: CostBasisRequest,
        positions: Iterable[PositionSnapshot],
        backstop_positions: Iterable[BackstopPosition] = (),
        lp_price: float = 0.0,
    ) -> PortfolioBreakdown:
        """Combine merged cost bases with current SDK balances.

        ``positions`` may hold one snapshot per wallet; balances of the same
        key are summed. Keys without a current balance are left out.
        """

        today = self.resolve_today(request.timezone)
        snaps = list(positions)
        current = _sum_by_key(snaps, lambda p: p.supply_amount)
        prices = {k.asset_address: price for k, (_, price) in current.items() if price > 0}
        prices.update(request.sdk_prices)
        records = self.cost_basis(request, prices)

        by_asset: dict[PoolAssetKey, HistoricalYieldBreakdown] = {}
        for key in sorted(set(records) | set(current)):
            tokens, price = current.get(key, (0.0, 0.0))
            if tokens <= 0:
                continue
            price = prices.get(key.asset_address, price)
            record = records.get(key) or untracked_cost_basis(price, key=key)
            by_asset[key] = historical_yield_breakdown(tokens, price, record)

        by_backstop = self._backstop_breakdowns(request, backstop_positions, lp_price, today)
        return PortfolioBreakdown(
            cost_basis=records,
            by_asset=by_asset,
            by_backstop=by_backstop,
            summary=summarize_breakdowns(by_asset, by_backstop),
            today=today,
        )

    def _backstop_breakdowns(
        self,
        request: CostBasisRequest,
        backstop_positions: Iterable[BackstopPosition],
        lp_price: float,
        today: date,
    ) -> dict[str, HistoricalYieldBreakdown]:
        held: dict[str, list[float]] = defaultdict(lambda: [0.0, 0.0])
        for pos in backstop_positions:
            held[pos.pool_id][0] += pos.lp_tokens
            held[pos.pool_id][1] += pos.cost_basis_lp
        if not held or lp_price <= 0:
            return {}

        merged = merge_across_wallets(
            self.fetch_backstop_ledgers(request.user_addresses, lp_price),
            request.active_wallets or None,
        )
        out: dict[str, HistoricalYieldBreakdown] = {}
        for pool_id, (lp_tokens, cost_basis_lp) in held.items():
            if lp_tokens <= 0:
                continue
            key = PoolAssetKey.backstop(pool_id)
            ledger = merged.get(key)
            record = None
            if ledger is not None:
                record = compute_cost_basis(
                    ledger.deposits, ledger.withdrawals, lp_price, today=today, key=key
                )
            if record is None:
                out[pool_id] = backstop_breakdown_without_events(lp_tokens, lp_price, cost_basis_lp)
            else:
                out[pool_id] = historical_yield_breakdown(lp_tokens, lp_price, record)
        return out

    def borrow_breakdowns(
        self,
        request: CostBasisRequest,
        positions: Iterable[PositionSnapshot],
    ) -> dict[PoolAssetKey, BorrowBreakdown]:
        """Interest and price-change cost of every open debt position."""

        today = self.resolve_today(request.timezone)
        debts = _sum_by_key(positions, lambda p: p.borrow_amount)
        prices = {k.asset_address: price for k, (_, price) in debts.items() if price > 0}
        prices.update(request.sdk_prices)
        merged = merge_across_wallets(
            self.fetch_borrow_ledgers(request.user_addresses, request.sdk_prices),
            request.active_wallets or None,
        )
        records = compute_cost_bases(merged, prices, today=today)
        out: dict[PoolAssetKey, BorrowBreakdown] = {}
        for key, record in records.items():
            tokens, price = debts.get(key, (0.0, 0.0))
            if tokens <= 0:
                continue
            out[key] = borrow_breakdown(tokens, price, record)
        return out

    # -- period --------------------------------------------------------

    def period_breakdown(self, request: PeriodRequest) -> PeriodBreakdownResult:
        """Protocol yield and price change within ``request.period``."""

        repo = self.repository
        today = self.resolve_today(request.timezone)
        start = period_start_date(request.period, today)
        wallets = request.user_addresses

        def inputs(wallet: str) -> tuple[Ledgers, dict[str, list[BalanceSnapshot]], date | None]:
            actions = repo.get_user_actions(
                wallet, action_types=SUPPLY_ACTIONS | WITHDRAW_ACTIONS, limit=ACTION_LIMIT
            )
            pairs = pool_asset_pairs(reversed(actions))
            ledgers = repo.get_deposit_events_with_prices_batch(wallet, pairs, request.sdk_prices)
            assets = {k.asset_address for k in pairs}
            if request.backstop_positions:
                assets.add(LP_TOKEN_ADDRESS)
            history = {a: repo.get_balance_history(wallet, a) for a in sorted(assets)}
            supply_days = [
                today_in(request.timezone, now=a.ledger_closed_at)
                for a in actions
                if a.action_type in SUPPLY_ACTIONS
            ]
            return ledgers, history, min(supply_days, default=None)

        fetched = self._fan_out(inputs, wallets)
        merged = merge_across_wallets({w: f[0] for w, f in fetched.items()})
        histories = {w: f[1] for w, f in fetched.items()}
        earliest = min((f[2] for f in fetched.values() if f[2] is not None), default=None)

        counts = dict.fromkeys(PRICE_SOURCES, 0)
        by_asset: dict[PoolAssetKey, PeriodYieldBreakdown] = {}
        keys = sorted(set(merged) | set(request.current_balances))
        for key in keys:
            price_now = request.sdk_prices.get(key.asset_address, 0.0)
            price_at_start, source = repo.get_historical_price(key.asset_address, start, price_now)
            ledger = merged.get(key, PositionLedger())
            result = period_yield_breakdown(
                key,
                request.current_balances.get(key, 0.0),
                price_now,
                [_combined_snapshot(key, histories, start)],
                start,
                price_at_start=price_at_start,
                price_source=source,
                deposits_in_period=ledger.deposits,
                withdrawals_in_period=ledger.withdrawals,
            )
            if result is not None:
                by_asset[key] = result
                counts[source] += 1

        by_backstop: dict[str, PeriodYieldBreakdown] = {}
        if request.backstop_positions and request.lp_token_price > 0:
            lp_price = request.lp_token_price
            backstop = merge_across_wallets(self.fetch_backstop_ledgers(wallets, lp_price))
            lp_start, source = repo.get_historical_price(LP_TOKEN_ADDRESS, start, lp_price)
            for ledger in backstop.values():
                first = min((e.date for e in ledger.deposits), default=None)
                if first is not None and (earliest is None or first < earliest):
                    earliest = first
            for pool_id, lp_now in request.backstop_positions.items():
                key = PoolAssetKey.backstop(pool_id)
                ledger = backstop.get(key, PositionLedger())
                result = period_yield_breakdown(
                    key,
                    lp_now,
                    lp_price,
                    [_combined_snapshot(key, histories, start)],
                    start,
                    price_at_start=lp_start,
                    price_source=source,
                    deposits_in_period=ledger.deposits,
                    withdrawals_in_period=ledger.withdrawals,
                )
                if result is not None:
                    by_backstop[pool_id] = result
                    counts[source] += 1

        effective_start, days = effective_period(start, earliest, today)
        return PeriodBreakdownResult(
            by_asset=by_asset,
            by_backstop=by_backstop,
            totals=period_totals([*by_asset.values(), *by_backstop.values()]),
            period_start=effective_start,
            period_days=days,
            earliest_deposit=earliest,
            price_source_counts=counts,
        )

    # -- P&L change ----------------------------------------------------

    def pnl_change_chart(
        self,
        request: PnlChangeRequest,
        *,
        live_fraction: float | None = None,
    ) -> PnlChangeChart:
        """Per-bucket P&L of the supply, backstop and debt positions of every wallet.

        The last bucket is live: it closes on the current balances of the
        request and counts only ``live_fraction`` of today (by default the
        elapsed share of the day in the request's timezone).
        """

        repo = self.repository
        today = self.resolve_today(request.timezone)
        boundaries = period_boundaries(request.period, today)
        live = elapsed_day_fraction(request.timezone) if live_fraction is None else live_fraction
        lp_price = request.sdk_lp_price or request.sdk_prices.get(LP_TOKEN_ADDRESS, 0.0)

        def inputs(wallet: str) -> tuple[Ledgers, Ledgers, Ledgers, dict[str, list[BalanceSnapshot]]]:
            supply_actions = repo.get_user_actions(
                wallet, action_types=SUPPLY_ACTIONS | WITHDRAW_ACTIONS, limit=ACTION_LIMIT
            )
            borrow_actions = repo.get_user_actions(
                wallet, action_types=BORROW_ACTIONS | REPAY_ACTIONS, limit=ACTION_LIMIT
            )
            supply_pairs = pool_asset_pairs(reversed(supply_actions))
            borrow_pairs = pool_asset_pairs(reversed(borrow_actions))
            supply = repo.get_deposit_events_with_prices_batch(wallet, supply_pairs, request.sdk_prices)
            borrow = repo.get_borrow_events_with_prices_batch(wallet, borrow_pairs, request.sdk_prices)
            backstop = {
                PoolAssetKey.backstop(pool_id): ledger
                for pool_id, ledger in repo.get_backstop_events_with_prices(wallet, lp_price).items()
            }
            assets = {
                k.asset_address
                for k in (*supply_pairs, *borrow_pairs, *request.current_balances, *request.current_borrow_balances)
            }
            assets.add(LP_TOKEN_ADDRESS)
            history = {a: repo.get_balance_history(wallet, a) for a in sorted(assets)}
            return supply, borrow, backstop, history

        fetched = self._fan_out(inputs, request.user_addresses)
        data = _ChartInputs(
            supply=merge_across_wallets({w: f[0] for w, f in fetched.items()}),
            borrow=merge_across_wallets({w: f[1] for w, f in fetched.items()}),
            backstop=merge_across_wallets({w: f[2] for w, f in fetched.items()}),
            histories={w: f[3] for w, f in fetched.items()},
        )
        points = [
            self._pnl_bucket(request, data, b, live if b.end == today else None)
            for b in boundaries
        ]
        logger.debug("P&L change %s: %d bars for %d wallets", request.period, len(points), len(request.user_addresses))
        return PnlChangeChart(points=points, period_type=request.period, granularity=granularity(request.period))

    def _bucket_prices(
        self, asset: str, b: PeriodBoundary, sdk_price: float, is_live: bool
    ) -> tuple[float, float, PriceSource]:
        """Price at the day before ``b``, price at its end and the source of the former."""

        start, source = self.repository.get_historical_price(asset, b.day_before, sdk_price)
        if is_live and sdk_price > 0:
            return start, sdk_price, source
        end, _ = self.repository.get_historical_price(asset, b.end, start)
        return start, end, source

    def _pnl_bucket(
        self,
        request: PnlChangeRequest,
        data: _ChartInputs,
        b: PeriodBoundary,
        live_fraction: float | None,
    ) -> PnlChangePoint:
        repo = self.repository
        is_live = live_fraction is not None
        days = b.days(live_fraction)
        blnd_price = request.sdk_blnd_price or request.sdk_prices.get(BLND_TOKEN_ADDRESS, 0.0)
        if request.use_historical_blnd_prices:
            blnd_price, _ = repo.get_historical_price(BLND_TOKEN_ADDRESS, b.end, blnd_price)
        lp_price = request.sdk_lp_price or request.sdk_prices.get(LP_TOKEN_ADDRESS, 0.0)

        supply: list[PeriodYieldBreakdown] = []
        supply_blnd = 0.0
        for key in sorted(set(data.supply) | set(request.current_balances)):
            sdk = request.sdk_prices.get(key.asset_address, 0.0)
            p_start, p_end, source = self._bucket_prices(key.asset_address, b, sdk, is_live)
            held = _combined_snapshot(key, data.histories, b.end).total
            tokens_end = request.current_balances.get(key, held) if is_live else held
            ledger = data.supply.get(key, PositionLedger()).within(b.start, b.end)
            row = period_yield_breakdown(
                key,
                tokens_end,
                p_end,
                [_combined_snapshot(key, data.histories, b.day_before)],
                b.day_before,
                price_at_start=p_start,
                price_source=source,
                deposits_in_period=ledger.deposits,
                withdrawals_in_period=ledger.withdrawals,
            )
            if row is None:
                continue
            supply.append(row)
            if blnd_price > 0:
                apy = repo.get_emission_apy(key.pool_id, "lending_supply", b.start, key.asset_address)
                supply_blnd += emission_estimate(
                    row.value_at_start, ledger.deposits, ledger.withdrawals, apy, b.start, days
                )

        backstop: list[PeriodYieldBreakdown] = []
        backstop_blnd = 0.0
        pools = set(request.backstop_positions) | {k.pool_id for k in data.backstop}
        for pool_id in sorted(pools):
            key = PoolAssetKey.backstop(pool_id)
            p_start, p_end, source = self._bucket_prices(LP_TOKEN_ADDRESS, b, lp_price, is_live)
            held = _combined_snapshot(key, data.histories, b.end).total
            lp_end = request.backstop_positions.get(pool_id, held) if is_live else held
            ledger = data.backstop.get(key, PositionLedger()).within(b.start, b.end)
            row = period_yield_breakdown(
                key,
                lp_end,
                p_end,
                [_combined_snapshot(key, data.histories, b.day_before)],
                b.day_before,
                price_at_start=p_start,
                price_source=source,
                deposits_in_period=ledger.deposits,
                withdrawals_in_period=ledger.withdrawals,
            )
            if row is None:
                continue
            backstop.append(row)
            apy = repo.get_emission_apy(pool_id, "backstop", b.start)
            backstop_blnd += emission_estimate(
                row.value_at_start, ledger.deposits, ledger.withdrawals, apy, b.start, days
            )

        borrow: list[BorrowBreakdown] = []
        borrow_blnd = 0.0
        for key in sorted(set(data.borrow) | set(request.current_borrow_balances)):
            sdk = request.sdk_prices.get(key.asset_address, 0.0)
            p_start, p_end, _ = self._bucket_prices(key.asset_address, b, sdk, is_live)
            debt_start = _combined_snapshot(key, data.histories, b.day_before).debt_balance
            owed = _combined_snapshot(key, data.histories, b.end).debt_balance
            debt_end = request.current_borrow_balances.get(key, owed) if is_live else owed
            ledger = data.borrow.get(key, PositionLedger()).within(b.start, b.end)
            row = period_borrow_breakdown(
                key, debt_start, debt_end, p_start, p_end, ledger, b, days=days
            )
            if row is None:
                continue
            borrow.append(row)
            if blnd_price > 0:
                apy = repo.get_emission_apy(key.pool_id, "lending_borrow", b.start, key.asset_address)
                borrow_blnd += emission_estimate(
                    debt_start * p_start, ledger.deposits, ledger.withdrawals, apy, b.start, days
                )

        return pnl_change_point(
            b,
            supply=supply,
            backstop=backstop,
            borrow=borrow,
            supply_blnd_usd=supply_blnd,
            backstop_blnd_usd=backstop_blnd,
            borrow_blnd_usd=borrow_blnd,
            is_live=is_live,
        )

    # -- realized ------------------------------------------------------

    def realized_yield(self, request: RealizedYieldRequest) -> RealizedYieldReport:
        """Realized totals and series over every wallet of the request combined."""

        today = self.resolve_today(request.timezone)

        def compute() -> RealizedYieldReport:
            per_wallet = self.fetch_transactions(request.user_addresses, request.sdk_prices, request.timezone)
            txs = [tx for w in request.user_addresses for tx in per_wallet[w]]
            return compute_realized_yield(txs, today=today)

        if self.cache is None:
            return compute()
        key = ("realized", request.user_addresses, today, tuple(sorted(request.sdk_prices.items())))
        return self.cache.get_or_compute(key, compute)

    def realized_yield_batch(
        self,
        wallets: Sequence[str],
        *,
        sdk_prices: Mapping[str, float] | None = None,
        timezone: str = "UTC",
    ) -> dict[str, BatchItem[RealizedYieldReport]]:
        """One realized report per wallet; a failed wallet yields an error item."""

        today = self.resolve_today(timezone)
        repo = self.repository
        prices = dict(sdk_prices or {})

        def one(wallet: str) -> list[Transaction]:
            actions = repo.get_user_actions(wallet, limit=REALIZED_ACTION_LIMIT)
            return transactions_from_actions(
                actions, repo.get_historical_price, sdk_prices=prices, timezone=timezone
            )

        workers = max(1, min(self.max_workers, len(wallets)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = self._submit(pool, one, wallets)
            wait(futures.values())

        out: dict[str, BatchItem[RealizedYieldReport]] = {}
        for wallet, fut in futures.items():
            try:
                report = compute_realized_yield(fut.result(), today=today)
            except Exception as exc:
                logger.warning("Realized yield for %s failed: %s", wallet, exc)
                out[wallet] = BatchItem(wallet=wallet, error=str(exc) or exc.__class__.__name__)
                continue
            out[wallet] = BatchItem(wallet=wallet, result=report)
        return out

    # -- APY -----------------------------------------------------------

    def apy_history(self, request: ApyHistoryRequest, timezone: str = "UTC") -> list[ApyDataPoint]:
        """Lending APY when an asset is given, otherwise the pool's backstop APY."""

        today = self.resolve_today(timezone)

        def compute() -> list[ApyDataPoint]:
            if request.asset_address:
                rows = self.repository.get_daily_rates(request.asset_address, request.pool_id, request.days)
                return rates_to_apy(daily_rates_to_samples(rows))
            rows = self.repository.get_backstop_daily_rates(request.pool_id, request.days)
            return share_rates_to_apy(backstop_rates_to_samples(rows))

        if self.cache is None:
            return compute()
        key = ("apy", request.pool_id, request.asset_address, request.days, today)
        return self.cache.get_or_compute(key, compute)

    def emission_apy_history(self, request: EmissionApyRequest) -> EmissionApyHistory:
        """Daily BLND emission APY of a reserve or backstop plus its average over the window."""

        today = self.resolve_today()

        def compute() -> EmissionApyHistory:
            history = self.repository.get_emission_apy_history(
                request.pool_id, request.apy_type, request.asset_address, request.days
            )
            avg = math.fsum(p.apy for p in history) / len(history) if history else 0.0
            return EmissionApyHistory(history=tuple(history), avg_30d=avg)

        if self.cache is None:
            return compute()
        key = ("emission", request.pool_id, request.apy_type, request.asset_address, request.days, today)
        return self.cache.get_or_compute(key, compute)

    # -- everything ----------------------------------------------------

    def run(
        self,
        request: CostBasisRequest,
        positions: Iterable[PositionSnapshot] = (),
        backstop_positions: Iterable[BackstopPosition] = (),
        lp_price: float = 0.0,
    ) -> PortfolioResult:
        """Since-inception breakdown, borrow costs and realized yield in one pass."""

        snaps = list(positions)
        realized = self.realized_yield(
            RealizedYieldRequest(
                user_addresses=request.user_addresses,
                sdk_prices=request.sdk_prices,
                timezone=request.timezone,
            )
        )
        return PortfolioResult(
            breakdown=self.historical_breakdown(request, snaps, backstop_positions, lp_price),
            realized=realized,
            borrow=self.borrow_breakdowns(request, snaps),
        )


def _combined_snapshot(
    key: PoolAssetKey,
    histories: Mapping[str, Mapping[str, list[BalanceSnapshot]]],
    day: date,
) -> BalanceSnapshot:
    """Combined balance and debt of every wallet on ``day`` as one synthetic snapshot."""

    rows = [h.get(key.asset_address, ()) for h in histories.values()]
    return BalanceSnapshot(
        snapshot_date=day,
        pool_id=key.pool_id,
        asset_address=key.asset_address,
        supply_balance=sum(balance_at(r, key.pool_id, day) for r in rows),
        debt_balance=sum(debt_at(r, key.pool_id, day) for r in rows),
    )


__all__ = [
    "BatchItem",
    "PeriodBreakdownResult",
    "PnlChangeChart",
    "PortfolioBreakdown",
    "PortfolioResult",
    "TTLCache",
    "YieldPipeline",
]
