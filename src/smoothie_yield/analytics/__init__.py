"""Analytics subpackage bundling cost-basis, breakdown, merge, realized-yield, P&L change and APY helpers."""

from . import apy, breakdown, cost_basis, merge, pnl_change, realized

__all__ = [
    "apy",
    "breakdown",
    "cost_basis",
    "merge",
    "pnl_change",
    "realized",
]
