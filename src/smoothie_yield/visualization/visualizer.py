"""Matplotlib-based chart helpers for Smoothie."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

import pandas as pd

from ..analytics.apy import apy_series
from ..analytics.pnl_change import PNL_COMPONENTS, pnl_change_frame
from ..analytics.realized import RealizedYieldReport
from ..core.models import ApyDataPoint, PnlChangePoint


class Visualizer:
    """Collection of static helpers that turn analytics outputs into charts."""

    @staticmethod
    def _plt():
        try:
            import matplotlib.pyplot as plt
        except Exception as exc:  # pragma: no cover
            raise RuntimeError(
                "matplotlib is required for visualization. Install the 'viz' extra."
            ) from exc
        return plt

    @staticmethod
    def _finish(plt, save_path: str | None, show: bool) -> None:
        plt.tight_layout()
        if save_path:
            plt.savefig(save_path, bbox_inches="tight")
        if show:
            plt.show()
        plt.close()

    @staticmethod
    def line_realized(
        report: RealizedYieldReport,
        title: str = "Cumulative realized P&L",
        *,
        columns: Sequence[str] = ("cumulative_deposited", "cumulative_withdrawn", "cumulative_realized"),
        save_path: str | None = None,
        show: bool = True,
    ) -> None:
        df = report.timeseries
        if df.empty:
            return
        plt = Visualizer._plt()
        plt.figure(figsize=(10, 6))
        for col in columns:
            plt.plot(df.index, df[col], label=col.replace("cumulative_", ""))
        plt.axhline(0.0, color="grey", linewidth=0.8)
        plt.title(title)
        plt.ylabel("USD")
        plt.legend()
        Visualizer._finish(plt, save_path, show)

    @staticmethod
    def stacked_pool_claims(
        report: RealizedYieldReport,
        title: str = "Claimed emissions by pool",
        *,
        save_path: str | None = None,
        show: bool = True,
    ) -> None:
        if not report.by_pool:
            return
        totals = pd.concat(
            {
                report.pool_names.get(pool_id) or pool_id[:8]: df.sum(axis=1)
                for pool_id, df in report.by_pool.items()
            },
            axis=1,
        ).ffill().fillna(0.0)
        plt = Visualizer._plt()
        plt.figure(figsize=(10, 6))
        plt.stackplot(totals.index, *[totals[c] for c in totals.columns], labels=list(totals.columns))
        plt.title(title)
        plt.ylabel("USD")
        plt.legend(loc="upper left")
        Visualizer._finish(plt, save_path, show)

    @staticmethod
    def line_apy(
        histories: Mapping[str, Sequence[ApyDataPoint]],
        title: str = "Historical APY",
        *,
        save_path: str | None = None,
        show: bool = True,
    ) -> None:
        series = {label: apy_series(points) for label, points in histories.items() if points}
        if not series:
            return
        plt = Visualizer._plt()
        plt.figure(figsize=(10, 6))
        for label, s in series.items():
            plt.plot(s.index, s.values, label=label)
        plt.title(title)
        plt.ylabel("APY (%)")
        plt.legend()
        Visualizer._finish(plt, save_path, show)

    @staticmethod
    def bar_pnl_change(
        points: Sequence[PnlChangePoint],
        title: str = "P&L change",
        *,
        save_path: str | None = None,
        show: bool = True,
    ) -> None:
        """Stacked bars per bucket; gains stack upwards and costs downwards from zero."""

        if not points:
            return
        frame = pnl_change_frame(points)
        signed = frame[PNL_COMPONENTS].astype(float)
        signed["borrow_interest_cost_usd"] = -signed["borrow_interest_cost_usd"]
        labels = list(frame.index)
        up = [0.0] * len(labels)
        down = [0.0] * len(labels)
        plt = Visualizer._plt()
        plt.figure(figsize=(10, 6))
        for col in PNL_COMPONENTS:
            values = signed[col].tolist()
            if not any(values):
                continue
            bottom = [u if v >= 0 else d for v, u, d in zip(values, up, down)]
            plt.bar(labels, values, bottom=bottom, label=col.removesuffix("_usd").replace("_", " "))
            up = [u + max(v, 0.0) for v, u in zip(values, up)]
            down = [d + min(v, 0.0) for v, d in zip(values, down)]
        plt.axhline(0.0, color="grey", linewidth=0.8)
        plt.title(title)
        plt.ylabel("USD")
        plt.legend()
        Visualizer._finish(plt, save_path, show)


__all__ = ["Visualizer"]
