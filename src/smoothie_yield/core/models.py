"""Immutable data models used throughout Smoothie.

Field names are snake_case; :meth:`to_dict` renders the camelCase JSON
contract consumed by the dashboard (dates as ``YYYY-MM-DD``, pool-asset keys
as ``poolId-assetAddress``).
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass, replace
from datetime import date, datetime
from typing import Any, Literal

from .constants import LP_TOKEN_ADDRESS

PriceSource = Literal["daily_token_prices", "forward_fill", "sdk_fallback"]
TransactionType = Literal["deposit", "withdraw", "claim"]
TransactionSource = Literal["pool", "backstop"]
EmissionApyType = Literal["lending_supply", "lending_borrow", "backstop"]


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _to_json(value: Any) -> Any:
    if isinstance(value, PoolAssetKey):
        return value.composite
    if isinstance(value, date):
        return value.isoformat()
    if is_dataclass(value) and hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_to_json(v) for v in value]
    if isinstance(value, dict):
        return {str(_to_json(k)): _to_json(v) for k, v in value.items()}
    return value


class _JsonMixin:
    def to_dict(self) -> dict[str, Any]:
        """Serialise to the camelCase JSON contract."""

        return {_camel(f.name): _to_json(getattr(self, f.name)) for f in fields(self)}  # type: ignore[arg-type]


@dataclass(frozen=True, order=True)
class PoolAssetKey:
    """Composite key of a lending position (or a backstop position with the LP token)."""

    pool_id: str
    asset_address: str

    @property
    def composite(self) -> str:
        return f"{self.pool_id}-{self.asset_address}"

    @classmethod
    def parse(cls, composite: str) -> "PoolAssetKey":
        """Split ``poolId-assetAddress`` on the first dash only."""

        pool_id, sep, asset = composite.partition("-")
        if not sep or not pool_id or not asset:
            raise ValueError(f"Not a pool-asset key: {composite!r}")
        return cls(pool_id=pool_id, asset_address=asset)

    @classmethod
    def backstop(cls, pool_id: str) -> "PoolAssetKey":
        return cls(pool_id=pool_id, asset_address=LP_TOKEN_ADDRESS)

    def __str__(self) -> str:
        return self.composite


@dataclass(frozen=True)
class TokenEvent(_JsonMixin):
    """A deposit or withdrawal priced at its calendar day."""

    date: date
    tokens: float  # always positive
    price_at_event: float
    usd_value: float
    price_source: PriceSource = "daily_token_prices"

    @classmethod
    def priced(
        cls,
        day: date,
        tokens: float,
        price: float,
        price_source: PriceSource = "daily_token_prices",
    ) -> "TokenEvent":
        return cls(
            date=day,
            tokens=float(tokens),
            price_at_event=float(price),
            usd_value=float(tokens) * float(price),
            price_source=price_source,
        )

    def repriced(self, price: float) -> "TokenEvent":
        return replace(
            self,
            price_at_event=float(price),
            usd_value=self.tokens * float(price),
            price_source="sdk_fallback",
        )


DepositEvent = TokenEvent
WithdrawalEvent = TokenEvent


@dataclass(frozen=True)
class PositionLedger(_JsonMixin):
    """Deposit and withdrawal events of one key (borrows/repays for debt positions)."""

    deposits: tuple[TokenEvent, ...] = ()
    withdrawals: tuple[TokenEvent, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.deposits and not self.withdrawals

    def extended(self, other: "PositionLedger") -> "PositionLedger":
        return PositionLedger(
            deposits=self.deposits + other.deposits,
            withdrawals=self.withdrawals + other.withdrawals,
        )

    def since(self, start: date) -> "PositionLedger":
        """Events dated strictly after ``start``."""

        return PositionLedger(
            deposits=tuple(e for e in self.deposits if e.date > start),
            withdrawals=tuple(e for e in self.withdrawals if e.date > start),
        )

    def within(self, start: date, end: date) -> "PositionLedger":
        """Events dated ``start``..``end`` inclusive."""

        return PositionLedger(
            deposits=tuple(e for e in self.deposits if start <= e.date <= end),
            withdrawals=tuple(e for e in self.withdrawals if start <= e.date <= end),
        )


@dataclass(frozen=True)
class CostBasisRecord(_JsonMixin):
    asset_address: str
    pool_id: str
    cost_basis_historical: float
    weighted_avg_deposit_price: float
    net_deposited_tokens: float
    total_deposited_usd: float = 0.0
    total_deposited_tokens: float = 0.0
    total_withdrawn_tokens: float = 0.0

    @property
    def key(self) -> PoolAssetKey:
        return PoolAssetKey(self.pool_id, self.asset_address)


@dataclass(frozen=True)
class HistoricalYieldBreakdown(_JsonMixin):
    cost_basis_historical: float
    weighted_avg_deposit_price: float
    net_deposited_tokens: float
    protocol_yield_tokens: float
    protocol_yield_usd: float
    price_change_usd: float
    price_change_percent: float
    current_value_usd: float
    total_earned_usd: float
    total_earned_percent: float


@dataclass(frozen=True)
class PeriodYieldBreakdown(_JsonMixin):
    key: PoolAssetKey
    tokens_at_start: float
    tokens_now: float
    net_deposited_in_period: float
    interest_earned_tokens: float
    price_at_start: float
    price_now: float
    price_source: PriceSource
    value_at_start: float
    value_now: float
    protocol_yield_usd: float
    price_change_usd: float
    total_earned_usd: float
    total_earned_percent: float


@dataclass(frozen=True)
class BorrowBreakdown(_JsonMixin):
    borrow_cost_basis_usd: float
    weighted_avg_borrow_price: float
    net_borrowed_tokens: float
    interest_accrued_tokens: float
    interest_accrued_usd: float
    price_change_on_debt_usd: float
    price_change_percent: float
    current_debt_tokens: float
    current_debt_usd: float
    total_cost_usd: float
    total_cost_percent: float


@dataclass(frozen=True)
class UserAction(_JsonMixin):
    """Row of the store's chronological action ledger."""

    id: str
    pool_id: str
    action_type: str
    ledger_closed_at: datetime
    user_address: str
    transaction_hash: str = ""
    pool_name: str | None = None
    asset_address: str | None = None
    asset_symbol: str | None = None
    amount_underlying: float | None = None
    amount_tokens: float | None = None
    claim_amount: float | None = None

    @property
    def amount(self) -> float:
        """Token amount moved by the action (claims report ``claim_amount``)."""

        for value in (self.claim_amount, self.amount_underlying, self.amount_tokens):
            if value is not None:
                return float(value)
        return 0.0


@dataclass(frozen=True)
class Transaction(_JsonMixin):
    date: date
    type: TransactionType
    source: TransactionSource
    asset: str
    asset_address: str | None
    amount: float
    price_usd: float
    value_usd: float
    tx_hash: str
    pool_id: str
    pool_name: str | None = None


@dataclass(frozen=True)
class SourceTotals(_JsonMixin):
    deposited: float = 0.0
    withdrawn: float = 0.0
    realized: float = 0.0


@dataclass(frozen=True)
class EmissionTotals(_JsonMixin):
    blnd_claimed: float = 0.0
    lp_claimed: float = 0.0
    usd_value: float = 0.0


@dataclass(frozen=True)
class RealizedYieldTotals(_JsonMixin):
    total_deposited_usd: float = 0.0
    total_withdrawn_usd: float = 0.0
    realized_pnl: float = 0.0
    pools: SourceTotals = field(default_factory=SourceTotals)
    backstop: SourceTotals = field(default_factory=SourceTotals)
    emissions: EmissionTotals = field(default_factory=EmissionTotals)
    roi_percent: float | None = None
    annualized_roi_percent: float | None = None
    days_active: int = 0
    first_activity_date: date | None = None
    last_activity_date: date | None = None


@dataclass(frozen=True)
class RateSample(_JsonMixin):
    date: date
    rate: float | None
    has_real_data: bool = True


@dataclass(frozen=True)
class ApyDataPoint(_JsonMixin):
    date: date
    apy: float


@dataclass(frozen=True)
class DailyRate(_JsonMixin):
    pool_id: str
    asset_address: str
    rate_date: date
    b_rate: float | None
    d_rate: float | None = None
    rate_timestamp: datetime | None = None  # None marks a forward-filled row


@dataclass(frozen=True)
class BackstopDailyRate(_JsonMixin):
    pool_id: str
    rate_date: date
    share_rate: float | None


@dataclass(frozen=True)
class DailyEmissionApy(_JsonMixin):
    """Daily BLND emission APY of a pool reserve (or of the pool backstop)."""

    pool_id: str
    apy_type: EmissionApyType
    rate_date: date
    emission_apy: float | None
    asset_address: str | None = None  # None for backstop rows


@dataclass(frozen=True)
class EmissionApyHistory(_JsonMixin):
    history: tuple[ApyDataPoint, ...]
    avg_30d: float

    def to_dict(self) -> dict[str, Any]:
        return {"history": _to_json(self.history), "avg30d": self.avg_30d}


@dataclass(frozen=True)
class PnlChangePoint(_JsonMixin):
    """One bar of the P&L change chart, all values in USD.

    Borrow interest is reported as a positive cost and subtracted in
    ``total_usd``; BLND emission values are positive for every source.
    """

    period: str
    period_start: date
    period_end: date
    supply_yield_usd: float = 0.0
    supply_blnd_usd: float = 0.0
    backstop_yield_usd: float = 0.0
    backstop_blnd_usd: float = 0.0
    borrow_interest_cost_usd: float = 0.0
    borrow_blnd_usd: float = 0.0
    price_change_usd: float = 0.0
    total_usd: float = 0.0
    is_live: bool = False


@dataclass(frozen=True)
class DailyPrice(_JsonMixin):
    token_address: str
    price_date: date
    usd_price: float


@dataclass(frozen=True)
class BalanceSnapshot(_JsonMixin):
    """End-of-day token balances of a lending position.

    Backstop positions use the LP token address with ``supply_balance`` as the
    LP token count.
    """

    snapshot_date: date
    pool_id: str
    asset_address: str
    supply_balance: float = 0.0
    collateral_balance: float = 0.0
    debt_balance: float = 0.0

    @property
    def total(self) -> float:
        return (self.supply_balance or 0.0) + (self.collateral_balance or 0.0)


@dataclass(frozen=True)
class PositionSnapshot(_JsonMixin):
    """Current SDK-reported lending position; ground truth for "now"."""

    pool_id: str
    asset_address: str
    supply_amount: float
    usd_price: float
    borrow_amount: float = 0.0
    symbol: str | None = None

    @property
    def key(self) -> PoolAssetKey:
        return PoolAssetKey(self.pool_id, self.asset_address)


@dataclass(frozen=True)
class BackstopPosition(_JsonMixin):
    """Current backstop position. Share counts are exact integers."""

    pool_id: str
    shares: int
    lp_tokens: float
    q4w_shares: int = 0
    cost_basis_lp: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["shares"] = str(self.shares)
        data["q4wShares"] = str(self.q4w_shares)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BackstopPosition":
        return cls(
            pool_id=str(data["poolId"]),
            shares=int(str(data.get("shares", "0"))),
            lp_tokens=float(data.get("lpTokens", 0.0)),
            q4w_shares=int(str(data.get("q4wShares", "0"))),
            cost_basis_lp=float(data.get("costBasisLp", 0.0) or 0.0),
        )


__all__ = [
    "ApyDataPoint",
    "BackstopDailyRate",
    "BackstopPosition",
    "BalanceSnapshot",
    "BorrowBreakdown",
    "CostBasisRecord",
    "DailyEmissionApy",
    "DailyPrice",
    "DailyRate",
    "DepositEvent",
    "EmissionApyHistory",
    "EmissionApyType",
    "EmissionTotals",
    "HistoricalYieldBreakdown",
    "PeriodYieldBreakdown",
    "PnlChangePoint",
    "PoolAssetKey",
    "PositionLedger",
    "PositionSnapshot",
    "PriceSource",
    "RateSample",
    "RealizedYieldTotals",
    "SourceTotals",
    "TokenEvent",
    "Transaction",
    "TransactionSource",
    "TransactionType",
    "UserAction",
    "WithdrawalEvent",
]
