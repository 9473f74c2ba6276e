"""Core constants shared across Smoothie modules."""

from __future__ import annotations

from datetime import date

# Stellar contract addresses of the tokens the dashboard prices itself.
LP_TOKEN_ADDRESS = "CAS3FL6TLZKDGGSISDBWGGPXT3NRR4DYTZD7YOD3HMYO6LTJUVGRVEAM"
BLND_TOKEN_ADDRESS = "CD25MNVTZDL4Y3XBCPCJXGXATV5WUHHOWMYFF4YBEGU5FCPGMYTVG5JY"

# 1 token = 10^7 stroops for every Blend asset.
STROOPS_PER_UNIT = 10_000_000

DAYS_PER_YEAR = 365

# "All" periods start here; no Blend activity predates it.
ALL_TIME_START = date(2020, 1, 1)

PERIOD_DAYS = {"1W": 7, "1M": 30}
PERIODS = ("1W", "1M", "1Y", "All")

# Store action types grouped by how they move a lending position.
SUPPLY_ACTIONS = frozenset({"supply", "supply_collateral"})
WITHDRAW_ACTIONS = frozenset({"withdraw", "withdraw_collateral"})
BORROW_ACTIONS = frozenset({"borrow"})
REPAY_ACTIONS = frozenset({"repay"})
CLAIM_ACTIONS = frozenset({"claim"})

BACKSTOP_DEPOSIT_ACTIONS = frozenset({"backstop_deposit"})
BACKSTOP_WITHDRAW_ACTIONS = frozenset({"backstop_withdraw"})
BACKSTOP_CLAIM_ACTIONS = frozenset({"backstop_claim"})

PRICE_SOURCES = ("daily_token_prices", "forward_fill", "sdk_fallback")

__all__ = [
    "ALL_TIME_START",
    "BACKSTOP_CLAIM_ACTIONS",
    "BACKSTOP_DEPOSIT_ACTIONS",
    "BACKSTOP_WITHDRAW_ACTIONS",
    "BLND_TOKEN_ADDRESS",
    "BORROW_ACTIONS",
    "CLAIM_ACTIONS",
    "DAYS_PER_YEAR",
    "LP_TOKEN_ADDRESS",
    "PERIODS",
    "PERIOD_DAYS",
    "PRICE_SOURCES",
    "REPAY_ACTIONS",
    "STROOPS_PER_UNIT",
    "SUPPLY_ACTIONS",
    "WITHDRAW_ACTIONS",
]
