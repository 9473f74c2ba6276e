"""Core data structures for :mod:`smoothie_yield`.

This subpackage groups the models, price lookups and event repositories used
across the project so they can be shared without importing the entire public
interface exposed in :mod:`smoothie_yield.__init__`.
"""

from __future__ import annotations

from .constants import BLND_TOKEN_ADDRESS, LP_TOKEN_ADDRESS
from .dates import today_in
from .models import (
    ApyDataPoint,
    BackstopDailyRate,
    BackstopPosition,
    BalanceSnapshot,
    BorrowBreakdown,
    CostBasisRecord,
    DailyEmissionApy,
    DailyPrice,
    DailyRate,
    EmissionApyHistory,
    HistoricalYieldBreakdown,
    PeriodYieldBreakdown,
    PnlChangePoint,
    PoolAssetKey,
    PositionLedger,
    PositionSnapshot,
    RateSample,
    RealizedYieldTotals,
    TokenEvent,
    Transaction,
    UserAction,
)
from .prices import PriceBook
from .repositories import EventRepository, InMemoryEventRepository, pool_asset_pairs

__all__ = [
    "ApyDataPoint",
    "BLND_TOKEN_ADDRESS",
    "BackstopDailyRate",
    "BackstopPosition",
    "BalanceSnapshot",
    "BorrowBreakdown",
    "CostBasisRecord",
    "DailyEmissionApy",
    "DailyPrice",
    "DailyRate",
    "EmissionApyHistory",
    "EventRepository",
    "HistoricalYieldBreakdown",
    "InMemoryEventRepository",
    "LP_TOKEN_ADDRESS",
    "PeriodYieldBreakdown",
    "PnlChangePoint",
    "PoolAssetKey",
    "PositionLedger",
    "PositionSnapshot",
    "PriceBook",
    "RateSample",
    "RealizedYieldTotals",
    "TokenEvent",
    "Transaction",
    "UserAction",
    "pool_asset_pairs",
    "today_in",
]
