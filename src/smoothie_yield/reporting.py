from __future__ import annotations

from dataclasses import asdict
from pathlib import Path

import pandas as pd

from .analytics.realized import POOL_SERIES_COLUMNS, SERIES_COLUMNS, RealizedYieldReport
from .analytics.pnl_change import pnl_change_frame
from .pipeline import PeriodBreakdownResult, PnlChangeChart, PortfolioResult


def _ensure_outdir(outdir: str | Path) -> Path:
    p = Path(outdir)
    p.mkdir(parents=True, exist_ok=True)
    return p


def _write(df: pd.DataFrame, path: Path) -> Path:
    df.to_csv(path, index=False)
    return path


def realized_summary_frame(report: RealizedYieldReport) -> pd.DataFrame:
    """One-row frame of the realized totals with nested totals flattened (``pools_deposited``...)."""

    return pd.json_normalize(asdict(report.totals), sep="_")


def realized_by_source_frame(report: RealizedYieldReport) -> pd.DataFrame:
    frames = [df.reset_index().assign(source=src) for src, df in report.by_source.items()]
    if not frames:
        return pd.DataFrame(columns=["source", "date", *SERIES_COLUMNS])
    out = pd.concat(frames, ignore_index=True)
    return out[["source", "date", *SERIES_COLUMNS]]


def realized_by_pool_frame(report: RealizedYieldReport) -> pd.DataFrame:
    frames = [
        df.reset_index().assign(pool_id=pool_id, pool_name=report.pool_names.get(pool_id))
        for pool_id, df in report.by_pool.items()
    ]
    if not frames:
        return pd.DataFrame(columns=["pool_id", "pool_name", "date", *POOL_SERIES_COLUMNS])
    out = pd.concat(frames, ignore_index=True)
    return out[["pool_id", "pool_name", "date", *POOL_SERIES_COLUMNS]]


def portfolio_report(
    result: PortfolioResult,
    outdir: str | Path,
    *,
    period: PeriodBreakdownResult | None = None,
    pnl_change: PnlChangeChart | None = None,
) -> dict[str, Path]:
    """Generate file-first CSV outputs for one request's portfolio result.

    Parameters
    ----------
    result:
        Output of :meth:`YieldPipeline.run`.
    outdir:
        Directory where CSV reports are written (created if missing).
    period:
        Optional period breakdown written to ``period.csv``.
    pnl_change:
        Optional P&L change bars written to ``pnl_change.csv``.

    Returns
    -------
    dict[str, Path]
        Mapping of report label to the written CSV path.

    Writes the following CSVs:
      - cost_basis.csv: average-cost basis per pool-asset key
      - by_asset.csv: since-inception breakdown per lending/backstop position
      - by_pool.csv: breakdown sub-totals per pool
      - borrow.csv: interest and price-change cost per debt position
      - realized_summary.csv: realized totals, ROI and emissions
      - realized_timeseries.csv: daily cumulative realized series
      - realized_by_source.csv: the same series per source (pool, backstop)
      - realized_by_pool.csv: cumulative claims per pool
      - transactions.csv: the classified transaction ledger
    """

    out = _ensure_outdir(outdir)
    paths: dict[str, Path] = {}
    breakdown = result.breakdown
    realized = result.realized

    cost_basis = pd.DataFrame(
        [{"key": k.composite, **asdict(r)} for k, r in breakdown.cost_basis.items()],
        columns=[
            "key",
            "asset_address",
            "pool_id",
            "cost_basis_historical",
            "weighted_avg_deposit_price",
            "net_deposited_tokens",
            "total_deposited_usd",
            "total_deposited_tokens",
            "total_withdrawn_tokens",
        ],
    )
    paths["cost_basis"] = _write(cost_basis, out / "cost_basis.csv")
    paths["by_asset"] = _write(breakdown.summary.rows, out / "by_asset.csv")
    paths["by_pool"] = _write(breakdown.summary.by_pool.reset_index(), out / "by_pool.csv")

    borrow = pd.DataFrame([{"key": k.composite, **asdict(b)} for k, b in result.borrow.items()])
    paths["borrow"] = _write(borrow, out / "borrow.csv")

    paths["realized_summary"] = _write(realized_summary_frame(realized), out / "realized_summary.csv")
    paths["realized_timeseries"] = _write(
        realized.timeseries.reset_index(), out / "realized_timeseries.csv"
    )
    paths["realized_by_source"] = _write(realized_by_source_frame(realized), out / "realized_by_source.csv")
    paths["realized_by_pool"] = _write(realized_by_pool_frame(realized), out / "realized_by_pool.csv")

    transactions = pd.DataFrame([asdict(tx) for tx in realized.transactions])
    paths["transactions"] = _write(transactions, out / "transactions.csv")

    if period is not None:
        rows = [
            {"key": b.key.composite, **{k: v for k, v in asdict(b).items() if k != "key"}}
            for b in [*period.by_asset.values(), *period.by_backstop.values()]
        ]
        paths["period"] = _write(pd.DataFrame(rows), out / "period.csv")

    if pnl_change is not None:
        frame = pnl_change_frame(pnl_change.points).reset_index()
        paths["pnl_change"] = _write(frame, out / "pnl_change.csv")

    return paths


__all__ = [
    "portfolio_report",
    "realized_by_pool_frame",
    "realized_by_source_frame",
    "realized_summary_frame",
]
