"""Typed request models validated from query parameters.

Handlers hand the raw query mapping to ``*.from_query``; the calculators only
ever see the validated, typed fields. Optional JSON overrides that fail to
parse are logged and ignored, and so are their individual malformed entries.
Required parameters and scalar options that fail validation become
:class:`~smoothie_yield.errors.InvalidParameterError`.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Annotated, Any, Literal, Self
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .analytics.pnl_change import PnlPeriod
from .core.constants import BLND_TOKEN_ADDRESS, LP_TOKEN_ADDRESS
from .core.models import PoolAssetKey
from .errors import InvalidParameterError, MissingParameterError

logger = logging.getLogger(__name__)

Query = Mapping[str, str | None]
Period = Literal["1W", "1M", "1Y", "All"]

_JSON_OBJECT = TypeAdapter(dict[str, Any])
_AMOUNT = TypeAdapter(Annotated[float, Field(strict=True)])
_PRICE = TypeAdapter(Annotated[float, Field(strict=True, gt=0)])
_WALLETS = TypeAdapter(tuple[Annotated[str, Field(strict=True)], ...])


def parse_json_mapping(raw: str | Mapping[str, Any] | None, *, name: str = "parameter") -> dict[str, Any]:
    """Decode a JSON object, returning ``{}`` (with a warning) when it is malformed."""

    if not raw:
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    try:
        return _JSON_OBJECT.validate_json(raw)
    except ValidationError:
        logger.warning("Failed to parse %s as a JSON object", name)
        return {}


def _entries(raw: Any, adapter: TypeAdapter, *, name: str) -> dict[str, Any]:
    """Validate every value of a JSON object with ``adapter``; failing entries are dropped."""

    out: dict[str, Any] = {}
    for k, v in parse_json_mapping(raw, name=name).items():
        try:
            out[str(k)] = adapter.validate_python(v)
        except ValidationError:
            logger.debug("Dropping %s entry %r: %r", name, k, v)
    return out


def parse_positive_floats(raw: str | Mapping[str, Any] | None, *, name: str = "parameter") -> dict[str, float]:
    """JSON object of positive numbers; other entries are dropped."""

    return _entries(raw, _PRICE, name=name)


def parse_key_mapping(raw: Any, adapter: TypeAdapter, *, name: str) -> dict[PoolAssetKey, Any]:
    """JSON object keyed by ``poolId-assetAddress``; malformed keys are skipped."""

    out: dict[PoolAssetKey, Any] = {}
    if isinstance(raw, Mapping) and all(isinstance(k, PoolAssetKey) for k in raw):
        for key, value in raw.items():
            try:
                out[key] = adapter.validate_python(value)
            except ValidationError:
                logger.debug("Dropping %s entry %s: %r", name, key, value)
        return out
    for composite, value in _entries(raw, adapter, name=name).items():
        try:
            out[PoolAssetKey.parse(composite)] = value
        except ValueError:
            logger.warning("Ignoring malformed key %r in %s", composite, name)
    return out


def parse_user_addresses(query: Query) -> tuple[str, ...]:
    """``userAddresses`` (comma separated) or ``userAddress``; at least one is required."""

    raw = query.get("userAddresses") or query.get("userAddress") or ""
    addresses = _split_addresses(raw)
    if not addresses:
        raise MissingParameterError("userAddress")
    return addresses


def _split_addresses(raw: str) -> tuple[str, ...]:
    return tuple(dict.fromkeys(a.strip() for a in raw.split(",") if a.strip()))


def _present(query: Query, *names: str) -> dict[str, str]:
    """Query values for ``names`` that are set and non-empty."""

    return {n: v for n in names if (v := query.get(n))}


class _Request(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    @classmethod
    def _validate_query(cls, payload: Mapping[str, Any]) -> Self:
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            err = exc.errors()[0]
            name = str(err["loc"][0]) if err["loc"] else cls.__name__
            raise InvalidParameterError(name, err.get("input")) from None


class _WalletRequest(_Request):
    user_addresses: tuple[str, ...] = Field(min_length=1)
    sdk_prices: dict[str, float] = Field(default_factory=dict)
    timezone: str = "UTC"

    @field_validator("user_addresses", mode="before")
    @classmethod
    def _unique_addresses(cls, v: Any) -> Any:
        if isinstance(v, str):
            return _split_addresses(v)
        if isinstance(v, (list, tuple)):
            return tuple(dict.fromkeys(v))
        return v

    @field_validator("sdk_prices", mode="before")
    @classmethod
    def _positive_prices(cls, v: Any) -> dict[str, float]:
        return parse_positive_floats(v, name="sdkPrices")

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone {v!r}") from None
        return v


class CostBasisRequest(_WalletRequest):
    active_wallets: dict[PoolAssetKey, tuple[str, ...]] = Field(default_factory=dict)

    @field_validator("active_wallets", mode="before")
    @classmethod
    def _wallet_lists(cls, v: Any) -> dict[PoolAssetKey, tuple[str, ...]]:
        return parse_key_mapping(v, _WALLETS, name="activeWallets")

    @classmethod
    def from_query(cls, query: Query) -> "CostBasisRequest":
        return cls._validate_query(
            {
                "userAddresses": parse_user_addresses(query),
                **_present(query, "sdkPrices", "activeWallets", "timezone"),
            }
        )


class _PositionsRequest(_WalletRequest):
    current_balances: dict[PoolAssetKey, float] = Field(default_factory=dict)
    backstop_positions: dict[str, float] = Field(default_factory=dict)

    @field_validator("current_balances", mode="before")
    @classmethod
    def _balances(cls, v: Any) -> dict[PoolAssetKey, float]:
        return parse_key_mapping(v, _AMOUNT, name="currentBalances")

    @field_validator("backstop_positions", mode="before")
    @classmethod
    def _backstop(cls, v: Any) -> dict[str, float]:
        return _entries(v, _AMOUNT, name="backstopPositions")


class PeriodRequest(_PositionsRequest):
    period: Period = "1M"
    lp_token_price: float = 0.0

    @classmethod
    def from_query(cls, query: Query) -> "PeriodRequest":
        return cls._validate_query(
            {
                "userAddresses": parse_user_addresses(query),
                **_present(
                    query,
                    "period",
                    "sdkPrices",
                    "currentBalances",
                    "backstopPositions",
                    "lpTokenPrice",
                    "timezone",
                ),
            }
        )


class RealizedYieldRequest(_WalletRequest):
    @classmethod
    def from_query(cls, query: Query) -> "RealizedYieldRequest":
        prices = _RealizedPrices._validate_query(_present(query, "sdkBlndPrice", "sdkLpPrice"))
        sdk_prices: dict[str, float] = {}
        if prices.sdk_blnd_price > 0:
            sdk_prices[BLND_TOKEN_ADDRESS] = prices.sdk_blnd_price
        if prices.sdk_lp_price > 0:
            sdk_prices[LP_TOKEN_ADDRESS] = prices.sdk_lp_price
        sdk_prices.update(parse_positive_floats(query.get("sdkPrices"), name="sdkPrices"))
        return cls._validate_query(
            {
                "userAddresses": parse_user_addresses(query),
                "sdkPrices": sdk_prices,
                **_present(query, "timezone"),
            }
        )


class _RealizedPrices(_Request):
    sdk_blnd_price: float = 0.0
    sdk_lp_price: float = 0.0


class ApyHistoryRequest(_Request):
    pool_id: str = Field(alias="pool", min_length=1)
    asset_address: str | None = Field(default=None, alias="asset")
    days: int = Field(default=180, gt=0)

    @field_validator("asset_address")
    @classmethod
    def _blank_is_backstop(cls, v: str | None) -> str | None:
        return v or None

    @classmethod
    def from_query(cls, query: Query) -> "ApyHistoryRequest":
        if not query.get("pool"):
            raise MissingParameterError("pool")
        return cls._validate_query(_present(query, "pool", "asset", "days"))


class PnlChangeRequest(_PositionsRequest):
    """Inputs of the P&L change chart.

    ``current_balances`` and ``current_borrow_balances`` hold live token
    balances and ``backstop_positions`` live LP token counts per pool; they
    close the live bar.
    """

    period: PnlPeriod = "1W"
    current_borrow_balances: dict[PoolAssetKey, float] = Field(default_factory=dict)
    sdk_blnd_price: float = Field(default=0.0, ge=0)
    sdk_lp_price: float = Field(default=0.0, ge=0)
    use_historical_blnd_prices: bool = False

    @field_validator("current_borrow_balances", mode="before")
    @classmethod
    def _borrow_balances(cls, v: Any) -> dict[PoolAssetKey, float]:
        return parse_key_mapping(v, _AMOUNT, name="currentBorrowBalances")

    @classmethod
    def from_query(cls, query: Query) -> "PnlChangeRequest":
        return cls._validate_query(
            {
                "userAddresses": parse_user_addresses(query),
                **_present(
                    query,
                    "period",
                    "sdkPrices",
                    "currentBalances",
                    "currentBorrowBalances",
                    "backstopPositions",
                    "sdkBlndPrice",
                    "sdkLpPrice",
                    "useHistoricalBlndPrices",
                    "timezone",
                ),
            }
        )


class EmissionApyRequest(_Request):
    pool_id: str = Field(alias="pool", min_length=1)
    apy_type: Literal["backstop", "lending_supply"] = Field(alias="type")
    asset_address: str | None = Field(default=None, alias="asset")
    days: int = Field(default=30, gt=0)

    @model_validator(mode="after")
    def _supply_needs_asset(self) -> Self:
        if self.apy_type == "lending_supply" and not self.asset_address:
            raise ValueError("lending_supply emission APY needs an asset")
        return self

    @classmethod
    def from_query(cls, query: Query) -> "EmissionApyRequest":
        for name in ("pool", "type"):
            if not query.get(name):
                raise MissingParameterError(name)
        if query.get("type") == "lending_supply" and not query.get("asset"):
            raise MissingParameterError("asset")
        return cls._validate_query(_present(query, "pool", "type", "asset", "days"))


__all__ = [
    "ApyHistoryRequest",
    "CostBasisRequest",
    "EmissionApyRequest",
    "Period",
    "PeriodRequest",
    "PnlChangeRequest",
    "RealizedYieldRequest",
    "parse_json_mapping",
    "parse_key_mapping",
    "parse_positive_floats",
    "parse_user_addresses",
]
