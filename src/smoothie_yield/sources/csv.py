"""CSV-backed data source implementations."""

from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd

from ..core.dates import parse_date
from ..core.models import (
    BackstopDailyRate,
    BalanceSnapshot,
    DailyEmissionApy,
    DailyPrice,
    DailyRate,
    UserAction,
)
from .base import opt_float, opt_str, read_csv_checked

logger = logging.getLogger(__name__)


class UserActionCSVSource:
    """Load the chronological action ledger.

    Required columns: ``id``, ``pool_id``, ``action_type``,
    ``ledger_closed_at`` and ``user_address``. Amount, asset and pool-name
    columns are optional; amounts are in whole tokens.
    """

    REQUIRED = ("id", "pool_id", "action_type", "ledger_closed_at", "user_address")

    def __init__(self, path: str | Path) -> None:
        self.path = path

    def fetch(self) -> list[UserAction]:
        df = read_csv_checked(self.path, self.REQUIRED)
        df["ledger_closed_at"] = pd.to_datetime(df["ledger_closed_at"], utc=True)
        actions = [
            UserAction(
                id=str(r["id"]),
                pool_id=str(r["pool_id"]),
                action_type=str(r["action_type"]).strip(),
                ledger_closed_at=r["ledger_closed_at"].to_pydatetime(),
                user_address=str(r["user_address"]),
                transaction_hash=opt_str(r.get("transaction_hash")) or "",
                pool_name=opt_str(r.get("pool_name")),
                asset_address=opt_str(r.get("asset_address")),
                asset_symbol=opt_str(r.get("asset_symbol")),
                amount_underlying=opt_float(r.get("amount_underlying")),
                amount_tokens=opt_float(r.get("amount_tokens")),
                claim_amount=opt_float(r.get("claim_amount")),
            )
            for _, r in df.iterrows()
        ]
        logger.debug("Loaded %d actions from %s", len(actions), self.path)
        return actions


class DailyPriceCSVSource:
    """Load ``token_address, price_date, usd_price`` rows."""

    REQUIRED = ("token_address", "price_date", "usd_price")

    def __init__(self, path: str | Path) -> None:
        self.path = path

    def fetch(self) -> list[DailyPrice]:
        df = read_csv_checked(self.path, self.REQUIRED)
        rows: list[DailyPrice] = []
        for _, r in df.iterrows():
            price = opt_float(r["usd_price"])
            if price is None:
                continue
            rows.append(
                DailyPrice(
                    token_address=str(r["token_address"]),
                    price_date=parse_date(str(r["price_date"])),
                    usd_price=price,
                )
            )
        return rows


class DailyRateCSVSource:
    """Load lending accrual rates.

    An empty ``rate_timestamp`` marks a forward-filled row. Without the column
    every row counts as real data, stamped at midnight UTC of its date.
    """

    REQUIRED = ("pool_id", "asset_address", "rate_date", "b_rate")

    def __init__(self, path: str | Path) -> None:
        self.path = path

    def fetch(self) -> list[DailyRate]:
        df = read_csv_checked(self.path, self.REQUIRED)
        if "rate_timestamp" in df.columns:
            df["rate_timestamp"] = pd.to_datetime(df["rate_timestamp"], utc=True)
        else:
            df["rate_timestamp"] = pd.to_datetime(df["rate_date"], utc=True)
        rows: list[DailyRate] = []
        for _, r in df.iterrows():
            ts = r.get("rate_timestamp")
            rows.append(
                DailyRate(
                    pool_id=str(r["pool_id"]),
                    asset_address=str(r["asset_address"]),
                    rate_date=parse_date(str(r["rate_date"])),
                    b_rate=opt_float(r["b_rate"]),
                    d_rate=opt_float(r.get("d_rate")),
                    rate_timestamp=None if ts is None or pd.isna(ts) else ts.to_pydatetime(),
                )
            )
        return rows


class BackstopRateCSVSource:
    """Load ``pool_id, rate_date, share_rate`` rows."""

    REQUIRED = ("pool_id", "rate_date", "share_rate")

    def __init__(self, path: str | Path) -> None:
        self.path = path

    def fetch(self) -> list[BackstopDailyRate]:
        df = read_csv_checked(self.path, self.REQUIRED)
        return [
            BackstopDailyRate(
                pool_id=str(r["pool_id"]),
                rate_date=parse_date(str(r["rate_date"])),
                share_rate=opt_float(r["share_rate"]),
            )
            for _, r in df.iterrows()
        ]


class BalanceSnapshotCSVSource:
    """Load end-of-day balances, optionally restricted to one ``user_address``.

    ``collateral_balance`` and ``debt_balance`` are optional and default to 0.
    """

    REQUIRED = ("snapshot_date", "pool_id", "asset_address", "supply_balance")

    def __init__(self, path: str | Path, user: str | None = None) -> None:
        self.path = path
        self.user = user

    def fetch(self) -> list[BalanceSnapshot]:
        df = read_csv_checked(self.path, self.REQUIRED)
        if self.user is not None:
            if "user_address" not in df.columns:
                raise ValueError("CSV missing columns: ['user_address']")
            df = df[df["user_address"] == self.user]
        return [
            BalanceSnapshot(
                snapshot_date=parse_date(str(r["snapshot_date"])),
                pool_id=str(r["pool_id"]),
                asset_address=str(r["asset_address"]),
                supply_balance=opt_float(r["supply_balance"]) or 0.0,
                collateral_balance=opt_float(r.get("collateral_balance")) or 0.0,
                debt_balance=opt_float(r.get("debt_balance")) or 0.0,
            )
            for _, r in df.iterrows()
        ]


class EmissionApyCSVSource:
    """Load ``pool_id, apy_type, rate_date, emission_apy`` rows.

    ``asset_address`` is optional; backstop rows leave it empty. Rows of an
    unknown ``apy_type`` are skipped.
    """

    REQUIRED = ("pool_id", "apy_type", "rate_date", "emission_apy")
    APY_TYPES = ("lending_supply", "lending_borrow", "backstop")

    def __init__(self, path: str | Path) -> None:
        self.path = path

    def fetch(self) -> list[DailyEmissionApy]:
        df = read_csv_checked(self.path, self.REQUIRED)
        rows: list[DailyEmissionApy] = []
        for _, r in df.iterrows():
            apy_type = str(r["apy_type"]).strip()
            if apy_type not in self.APY_TYPES:
                logger.warning("Skipping emission APY row of unknown type %r", apy_type)
                continue
            rows.append(
                DailyEmissionApy(
                    pool_id=str(r["pool_id"]),
                    apy_type=apy_type,  # type: ignore[arg-type]
                    rate_date=parse_date(str(r["rate_date"])),
                    emission_apy=opt_float(r["emission_apy"]),
                    asset_address=opt_str(r.get("asset_address")),
                )
            )
        return rows


__all__ = [
    "BackstopRateCSVSource",
    "BalanceSnapshotCSVSource",
    "DailyPriceCSVSource",
    "DailyRateCSVSource",
    "EmissionApyCSVSource",
    "UserActionCSVSource",
]
