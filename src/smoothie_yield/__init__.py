"""
Smoothie: yield analytics for Blend lending and backstop positions on Stellar.

Design goals:
- Average-cost basis per pool-asset key, merged across a user's wallets
- Yield split into protocol yield (token growth) and price change
- Period, realized (cash-flow), per-bucket P&L change and historical APY views
  over the same events
- Immutable data model + a queryable event repository
- File-first CSV reporting and optional matplotlib charts
"""

from __future__ import annotations

import logging

from . import analytics, errors, requests
from .analytics.apy import annualize, rates_to_apy, share_rates_to_apy
from .analytics.breakdown import (
    BreakdownSummary,
    backstop_breakdown_without_events,
    borrow_breakdown,
    historical_yield_breakdown,
    period_start_date,
    period_yield_breakdown,
    summarize_breakdowns,
)
from .analytics.cost_basis import compute_cost_basis, compute_cost_bases
from .analytics.merge import is_wallet_excluded, merge_across_wallets
from .analytics.pnl_change import PeriodBoundary, period_boundaries, pnl_change_point
from .analytics.realized import RealizedYieldReport, compute_realized_yield, transactions_from_actions
from .core import (
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
    EventRepository,
    HistoricalYieldBreakdown,
    InMemoryEventRepository,
    PeriodYieldBreakdown,
    PnlChangePoint,
    PoolAssetKey,
    PositionLedger,
    PositionSnapshot,
    PriceBook,
    RateSample,
    RealizedYieldTotals,
    TokenEvent,
    Transaction,
    UserAction,
    today_in,
)
from .errors import ComputationError, InvalidParameterError, MissingParameterError, SmoothieError
from .pipeline import (
    BatchItem,
    PeriodBreakdownResult,
    PnlChangeChart,
    PortfolioBreakdown,
    PortfolioResult,
    TTLCache,
    YieldPipeline,
)
from .requests import (
    ApyHistoryRequest,
    CostBasisRequest,
    EmissionApyRequest,
    PeriodRequest,
    PnlChangeRequest,
    RealizedYieldRequest,
)
from .visualization import Visualizer

logger = logging.getLogger(__name__)

__all__ = [
    "ApyDataPoint",
    "ApyHistoryRequest",
    "BackstopDailyRate",
    "BackstopPosition",
    "BalanceSnapshot",
    "BatchItem",
    "BorrowBreakdown",
    "BreakdownSummary",
    "ComputationError",
    "CostBasisRecord",
    "CostBasisRequest",
    "DailyEmissionApy",
    "DailyPrice",
    "DailyRate",
    "EmissionApyHistory",
    "EmissionApyRequest",
    "EventRepository",
    "HistoricalYieldBreakdown",
    "InMemoryEventRepository",
    "InvalidParameterError",
    "MissingParameterError",
    "PeriodBoundary",
    "PeriodBreakdownResult",
    "PeriodRequest",
    "PeriodYieldBreakdown",
    "PnlChangeChart",
    "PnlChangePoint",
    "PnlChangeRequest",
    "PoolAssetKey",
    "PortfolioBreakdown",
    "PortfolioResult",
    "PositionLedger",
    "PositionSnapshot",
    "PriceBook",
    "RateSample",
    "RealizedYieldReport",
    "RealizedYieldRequest",
    "RealizedYieldTotals",
    "SmoothieError",
    "TTLCache",
    "TokenEvent",
    "Transaction",
    "UserAction",
    "Visualizer",
    "YieldPipeline",
    "analytics",
    "annualize",
    "backstop_breakdown_without_events",
    "borrow_breakdown",
    "compute_cost_basis",
    "compute_cost_bases",
    "compute_realized_yield",
    "errors",
    "historical_yield_breakdown",
    "is_wallet_excluded",
    "merge_across_wallets",
    "period_boundaries",
    "period_start_date",
    "period_yield_breakdown",
    "pnl_change_point",
    "rates_to_apy",
    "requests",
    "share_rates_to_apy",
    "summarize_breakdowns",
    "today_in",
    "transactions_from_actions",
]
