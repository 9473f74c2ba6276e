"""Event & rate store interface plus an in-memory implementation."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Collection, Iterable, Mapping
from datetime import date, timedelta
from typing import Protocol

import pandas as pd

from .constants import (
    BACKSTOP_DEPOSIT_ACTIONS,
    BACKSTOP_WITHDRAW_ACTIONS,
    BORROW_ACTIONS,
    LP_TOKEN_ADDRESS,
    REPAY_ACTIONS,
    SUPPLY_ACTIONS,
    WITHDRAW_ACTIONS,
)
from .dates import today_in
from .models import (
    ApyDataPoint,
    BackstopDailyRate,
    BalanceSnapshot,
    DailyEmissionApy,
    DailyPrice,
    DailyRate,
    EmissionApyType,
    PoolAssetKey,
    PositionLedger,
    PriceSource,
    TokenEvent,
    UserAction,
)
from .prices import PriceBook


class EventRepository(Protocol):
    """Queryable store of user actions, daily prices and daily rates."""

    def get_user_actions(
        self,
        user: str,
        *,
        action_types: Collection[str] | None = None,
        pool_id: str | None = None,
        asset_address: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        limit: int = 1000,
    ) -> list[UserAction]: ...

    def get_deposit_events_with_prices_batch(
        self,
        user: str,
        pairs: Iterable[PoolAssetKey],
        sdk_prices: Mapping[str, float],
    ) -> dict[PoolAssetKey, PositionLedger]: ...

    def get_borrow_events_with_prices_batch(
        self,
        user: str,
        pairs: Iterable[PoolAssetKey],
        sdk_prices: Mapping[str, float],
    ) -> dict[PoolAssetKey, PositionLedger]: ...

    def get_backstop_events_with_prices(
        self, user: str, sdk_lp_price: float
    ) -> dict[str, PositionLedger]: ...

    def get_daily_rates(
        self, asset_address: str, pool_id: str | None = None, days: int = 30
    ) -> list[DailyRate]: ...

    def get_backstop_daily_rates(self, pool_id: str, days: int = 30) -> list[BackstopDailyRate]: ...

    def get_emission_apy_history(
        self,
        pool_id: str,
        apy_type: EmissionApyType,
        asset_address: str | None = None,
        days: int = 30,
    ) -> list[ApyDataPoint]: ...

    def get_emission_apy(
        self,
        pool_id: str,
        apy_type: EmissionApyType,
        day: date,
        asset_address: str | None = None,
    ) -> float: ...

    def get_balance_history(self, user: str, asset_address: str) -> list[BalanceSnapshot]: ...

    def get_historical_price(
        self, token_address: str, day: date, fallback: float = 0.0
    ) -> tuple[float, PriceSource]: ...


def pool_asset_pairs(actions: Iterable[UserAction]) -> list[PoolAssetKey]:
    """Unique pool-asset keys in first-seen order, skipping actions without an asset."""

    seen: dict[PoolAssetKey, None] = {}
    for action in actions:
        if not action.pool_id or not action.asset_address:
            continue
        seen.setdefault(PoolAssetKey(action.pool_id, action.asset_address), None)
    return list(seen)


class InMemoryEventRepository:
    """Lightweight in-memory store with pandas export.

    Action days are calendar days in ``timezone``; ``today`` bounds the
    ``days`` look-back of the rate queries.
    """

    def __init__(
        self,
        actions: Iterable[UserAction] | None = None,
        prices: Iterable[DailyPrice] | None = None,
        daily_rates: Iterable[DailyRate] | None = None,
        backstop_rates: Iterable[BackstopDailyRate] | None = None,
        *,
        emission_apy: Iterable[DailyEmissionApy] | None = None,
        timezone: str = "UTC",
        today: date | None = None,
    ) -> None:
        self._actions: list[UserAction] = list(actions) if actions else []
        self._prices = PriceBook(prices)
        self._daily_rates: list[DailyRate] = list(daily_rates) if daily_rates else []
        self._backstop_rates: list[BackstopDailyRate] = list(backstop_rates) if backstop_rates else []
        self._emission_apy: list[DailyEmissionApy] = list(emission_apy) if emission_apy else []
        self._balances: dict[str, list[BalanceSnapshot]] = defaultdict(list)
        self.timezone = timezone
        self._today = today

    # -- loading -------------------------------------------------------

    def add_actions(self, actions: Iterable[UserAction]) -> None:
        self._actions.extend(actions)

    def add_prices(self, prices: Iterable[DailyPrice]) -> None:
        self._prices.extend(prices)

    def add_daily_rates(self, rates: Iterable[DailyRate]) -> None:
        self._daily_rates.extend(rates)

    def add_backstop_rates(self, rates: Iterable[BackstopDailyRate]) -> None:
        self._backstop_rates.extend(rates)

    def add_emission_apy(self, rows: Iterable[DailyEmissionApy]) -> None:
        self._emission_apy.extend(rows)

    def add_balance_snapshots(self, user: str, snapshots: Iterable[BalanceSnapshot]) -> None:
        self._balances[user].extend(snapshots)

    @property
    def today(self) -> date:
        return self._today or today_in(self.timezone)

    @property
    def prices(self) -> PriceBook:
        return self._prices

    def action_day(self, action: UserAction) -> date:
        return today_in(self.timezone, now=action.ledger_closed_at)

    # -- queries -------------------------------------------------------

    def get_user_actions(
        self,
        user: str,
        *,
        action_types: Collection[str] | None = None,
        pool_id: str | None = None,
        asset_address: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        limit: int = 1000,
        offset: int = 0,
    ) -> list[UserAction]:
        res: list[UserAction] = []
        for action in self._actions:
            if action.user_address != user:
                continue
            if action_types and action.action_type not in action_types:
                continue
            if pool_id and action.pool_id != pool_id:
                continue
            if asset_address and action.asset_address != asset_address:
                continue
            day = self.action_day(action)
            if start_date and day < start_date:
                continue
            if end_date and day > end_date:
                continue
            res.append(action)
        res.sort(key=lambda a: a.ledger_closed_at, reverse=True)
        return res[offset : offset + limit]

    def _priced_ledgers(
        self,
        user: str,
        pairs: Iterable[PoolAssetKey],
        sdk_prices: Mapping[str, float],
        add_types: Collection[str],
        remove_types: Collection[str],
        default_asset: str | None = None,
    ) -> dict[PoolAssetKey, PositionLedger]:
        wanted = set(pairs)
        adds: dict[PoolAssetKey, list[TokenEvent]] = defaultdict(list)
        removes: dict[PoolAssetKey, list[TokenEvent]] = defaultdict(list)
        actions = self.get_user_actions(
            user, action_types=set(add_types) | set(remove_types), limit=len(self._actions)
        )
        for action in reversed(actions):
            asset = action.asset_address or default_asset
            if not asset:
                continue
            key = PoolAssetKey(action.pool_id, asset)
            if key not in wanted:
                continue
            day = self.action_day(action)
            price, source = self._prices.resolve(asset, day, sdk_prices.get(asset, 0.0))
            event = TokenEvent.priced(day, abs(action.amount), price, source)
            target = adds if action.action_type in add_types else removes
            target[key].append(event)
        return {
            key: PositionLedger(tuple(adds.get(key, ())), tuple(removes.get(key, ())))
            for key in wanted
            if key in adds or key in removes
        }

    def get_deposit_events_with_prices_batch(
        self,
        user: str,
        pairs: Iterable[PoolAssetKey],
        sdk_prices: Mapping[str, float],
    ) -> dict[PoolAssetKey, PositionLedger]:
        return self._priced_ledgers(user, pairs, sdk_prices, SUPPLY_ACTIONS, WITHDRAW_ACTIONS)

    def get_borrow_events_with_prices_batch(
        self,
        user: str,
        pairs: Iterable[PoolAssetKey],
        sdk_prices: Mapping[str, float],
    ) -> dict[PoolAssetKey, PositionLedger]:
        return self._priced_ledgers(user, pairs, sdk_prices, BORROW_ACTIONS, REPAY_ACTIONS)

    def get_backstop_events_with_prices(
        self, user: str, sdk_lp_price: float
    ) -> dict[str, PositionLedger]:
        actions = self.get_user_actions(
            user,
            action_types=BACKSTOP_DEPOSIT_ACTIONS | BACKSTOP_WITHDRAW_ACTIONS,
            limit=len(self._actions),
        )
        pool_ids = list(dict.fromkeys(a.pool_id for a in reversed(actions)))
        sdk = {LP_TOKEN_ADDRESS: sdk_lp_price}
        ledgers = self._priced_ledgers(
            user,
            [PoolAssetKey.backstop(p) for p in pool_ids],
            sdk,
            BACKSTOP_DEPOSIT_ACTIONS,
            BACKSTOP_WITHDRAW_ACTIONS,
            default_asset=LP_TOKEN_ADDRESS,
        )
        return {key.pool_id: ledger for key, ledger in ledgers.items()}

    def get_daily_rates(
        self, asset_address: str, pool_id: str | None = None, days: int = 30
    ) -> list[DailyRate]:
        cutoff = self.today - timedelta(days=days)
        rows = [
            r
            for r in self._daily_rates
            if r.asset_address == asset_address
            and (pool_id is None or r.pool_id == pool_id)
            and r.rate_date >= cutoff
        ]
        return sorted(rows, key=lambda r: r.rate_date, reverse=True)

    def get_backstop_daily_rates(self, pool_id: str, days: int = 30) -> list[BackstopDailyRate]:
        cutoff = self.today - timedelta(days=days)
        rows = [r for r in self._backstop_rates if r.pool_id == pool_id and r.rate_date >= cutoff]
        return sorted(rows, key=lambda r: r.rate_date, reverse=True)

    def get_balance_history(self, user: str, asset_address: str) -> list[BalanceSnapshot]:
        return [s for s in self._balances.get(user, []) if s.asset_address == asset_address]

    def _emission_rows(
        self, pool_id: str, apy_type: EmissionApyType, asset_address: str | None
    ) -> dict[date, float]:
        """Highest non-null emission APY per day; backstop rows ignore the asset."""

        by_day: dict[date, float] = {}
        for r in self._emission_apy:
            if r.pool_id != pool_id or r.apy_type != apy_type or r.emission_apy is None:
                continue
            if apy_type != "backstop" and asset_address and r.asset_address != asset_address:
                continue
            by_day[r.rate_date] = max(by_day.get(r.rate_date, r.emission_apy), r.emission_apy)
        return by_day

    def get_emission_apy_history(
        self,
        pool_id: str,
        apy_type: EmissionApyType,
        asset_address: str | None = None,
        days: int = 30,
    ) -> list[ApyDataPoint]:
        cutoff = self.today - timedelta(days=days)
        by_day = self._emission_rows(pool_id, apy_type, asset_address)
        return [ApyDataPoint(date=d, apy=by_day[d]) for d in sorted(by_day) if d >= cutoff]

    def get_emission_apy(
        self,
        pool_id: str,
        apy_type: EmissionApyType,
        day: date,
        asset_address: str | None = None,
    ) -> float:
        """Emission APY in effect on ``day``, carried forward from the last known day (0 if none)."""

        by_day = self._emission_rows(pool_id, apy_type, asset_address)
        known = [d for d in by_day if d <= day]
        return by_day[max(known)] if known else 0.0

    def get_historical_price(
        self, token_address: str, day: date, fallback: float = 0.0
    ) -> tuple[float, PriceSource]:
        return self._prices.resolve(token_address, day, fallback)

    # -- export --------------------------------------------------------

    def users(self) -> list[str]:
        return sorted({a.user_address for a in self._actions})

    def actions_dataframe(self, user: str | None = None) -> pd.DataFrame:
        rows = [
            {**a.to_dict(), "day": self.action_day(a)}
            for a in self._actions
            if user is None or a.user_address == user
        ]
        return pd.DataFrame(rows)

    def __len__(self) -> int:
        return len(self._actions)


__all__ = [
    "EventRepository",
    "InMemoryEventRepository",
    "pool_asset_pairs",
]
