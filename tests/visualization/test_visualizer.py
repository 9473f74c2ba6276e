"""Tests for visualization helpers capturing Matplotlib interactions."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from typing import Any

import pandas as pd
import pytest

from smoothie_yield.analytics.realized import compute_realized_yield
from smoothie_yield.core.models import ApyDataPoint, PnlChangePoint, Transaction
from smoothie_yield.visualization import Visualizer


class MatplotlibSpy:
    """Spy object replicating the minimal Matplotlib API used by Visualizer."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []

    def _record(self, name: str, args: Iterable[Any] = (), **kwargs: Any) -> None:
        self.calls.append((name, tuple(args), dict(kwargs)))

    # plotting primitives -------------------------------------------------
    def figure(self, *args: Any, **kwargs: Any) -> None:  # pragma: no cover - simple proxy
        self._record("figure", args, **kwargs)

    def plot(self, x: Iterable[Any], y: Iterable[Any], *args: Any, **kwargs: Any) -> None:
        self._record("plot", (list(x), list(y), *args), **kwargs)

    def stackplot(self, x: Iterable[Any], *ys: Iterable[Any], **kwargs: Any) -> None:
        self._record("stackplot", (list(x), *[list(y) for y in ys]), **kwargs)

    def bar(self, x: Iterable[Any], height: Iterable[Any], *args: Any, **kwargs: Any) -> None:
        self._record("bar", (list(x), list(height), *args), **kwargs)

    def axhline(self, *args: Any, **kwargs: Any) -> None:
        self._record("axhline", args, **kwargs)

    # labelling helpers ---------------------------------------------------
    def title(self, *args: Any, **kwargs: Any) -> None:
        self._record("title", args, **kwargs)

    def ylabel(self, *args: Any, **kwargs: Any) -> None:
        self._record("ylabel", args, **kwargs)

    def legend(self, *args: Any, **kwargs: Any) -> None:
        self._record("legend", args, **kwargs)

    def tight_layout(self, *args: Any, **kwargs: Any) -> None:
        self._record("tight_layout", args, **kwargs)

    def savefig(self, *args: Any, **kwargs: Any) -> None:
        self._record("savefig", args, **kwargs)

    def show(self, *args: Any, **kwargs: Any) -> None:
        self._record("show", args, **kwargs)

    def close(self, *args: Any, **kwargs: Any) -> None:
        self._record("close", args, **kwargs)

    # utilities -----------------------------------------------------------
    def names(self) -> list[str]:
        return [call[0] for call in self.calls]

    def get_call(self, name: str) -> tuple[str, tuple[Any, ...], dict[str, Any]]:
        for call in self.calls:
            if call[0] == name:
                return call
        msg = f"no call named {name!r} recorded"
        raise AssertionError(msg)


@pytest.fixture()
def spy(monkeypatch: pytest.MonkeyPatch) -> MatplotlibSpy:
    canvas = MatplotlibSpy()
    monkeypatch.setattr(Visualizer, "_plt", staticmethod(lambda: canvas))
    return canvas


def _tx(day: int, type: str, value: float, source: str = "pool", pool: str = "P1") -> Transaction:
    return Transaction(
        date=date(2025, 3, day),
        type=type,  # type: ignore[arg-type]
        source=source,  # type: ignore[arg-type]
        asset="USDC",
        asset_address="USDC",
        amount=value,
        price_usd=1.0,
        value_usd=value,
        tx_hash=f"h{day}",
        pool_id=pool,
        pool_name={"P1": "Fixed", "P2": None}[pool],
    )


@pytest.fixture
def report():
    return compute_realized_yield(
        [
            _tx(1, "deposit", 100.0),
            _tx(3, "claim", 4.0),
            _tx(4, "claim", 2.0, source="backstop", pool="P2"),
            _tx(5, "withdraw", 50.0),
        ],
        today=date(2025, 3, 6),
    )


def test_line_realized_plots_selected_columns(spy: MatplotlibSpy, report) -> None:
    Visualizer.line_realized(report, title="Realized", show=False)

    plot_calls = [call for call in spy.calls if call[0] == "plot"]
    assert [call[2]["label"] for call in plot_calls] == ["deposited", "withdrawn", "realized"]
    assert plot_calls[0][1][0] == list(report.timeseries.index)
    assert plot_calls[2][1][1] == report.timeseries["cumulative_realized"].tolist()
    assert spy.get_call("axhline")[1][0] == 0.0
    assert spy.get_call("title")[1][0] == "Realized"
    assert spy.get_call("ylabel")[1][0] == "USD"
    assert "show" not in spy.names()
    assert spy.names()[-1] == "close"


def test_save_path_and_show(spy: MatplotlibSpy, report, tmp_path) -> None:
    target = tmp_path / "realized.png"
    Visualizer.line_realized(report, save_path=str(target), show=True)

    assert spy.get_call("savefig")[1][0] == str(target)
    assert spy.get_call("savefig")[2]["bbox_inches"] == "tight"
    assert "show" in spy.names()


def test_stacked_pool_claims_labels_by_pool_name(spy: MatplotlibSpy, report) -> None:
    Visualizer.stacked_pool_claims(report, show=False)

    call = spy.get_call("stackplot")
    assert call[2]["labels"] == ["Fixed", "P2"]
    fixed, backstop = call[1][1], call[1][2]
    assert fixed[-1] == pytest.approx(4.0)
    assert backstop[-1] == pytest.approx(2.0)
    assert spy.get_call("legend")[2]["loc"] == "upper left"


def test_line_apy_plots_each_history(spy: MatplotlibSpy) -> None:
    histories = {
        "USDC": [ApyDataPoint(date(2025, 3, 1), 5.0), ApyDataPoint(date(2025, 3, 2), 6.0)],
        "Backstop": [ApyDataPoint(date(2025, 3, 2), 9.0)],
        "Empty": [],
    }
    Visualizer.line_apy(histories, show=False)

    plot_calls = [call for call in spy.calls if call[0] == "plot"]
    assert [call[2]["label"] for call in plot_calls] == ["USDC", "Backstop"]
    assert plot_calls[0][1][0] == [pd.Timestamp("2025-03-01"), pd.Timestamp("2025-03-02")]
    assert plot_calls[0][1][1] == [5.0, 6.0]
    assert spy.get_call("ylabel")[1][0] == "APY (%)"


def test_empty_inputs_draw_nothing(spy: MatplotlibSpy) -> None:
    empty = compute_realized_yield([], today=date(2025, 3, 6))
    Visualizer.line_realized(empty, show=False)
    Visualizer.stacked_pool_claims(empty, show=False)
    Visualizer.line_apy({"USDC": []}, show=False)
    Visualizer.bar_pnl_change([], show=False)
    assert spy.calls == []


def test_bar_pnl_change_stacks_gains_up_and_costs_down(spy: MatplotlibSpy) -> None:
    points = [
        PnlChangePoint("Jun 29", date(2025, 6, 29), date(2025, 6, 29), supply_yield_usd=2.0, borrow_interest_cost_usd=0.5),
        PnlChangePoint(
            "Jun 30",
            date(2025, 6, 30),
            date(2025, 6, 30),
            supply_yield_usd=1.0,
            supply_blnd_usd=0.5,
            price_change_usd=-3.0,
            is_live=True,
        ),
    ]
    Visualizer.bar_pnl_change(points, title="P&L", show=False)

    bars = {call[2]["label"]: call for call in spy.calls if call[0] == "bar"}
    assert list(bars) == ["supply yield", "supply blnd", "borrow interest cost", "price change"]
    assert bars["supply yield"][1][0] == ["Jun 29", "Jun 30"]
    assert bars["supply yield"][2]["bottom"] == [0.0, 0.0]
    assert bars["supply blnd"][2]["bottom"] == [2.0, 1.0]
    assert bars["borrow interest cost"][1][1] == [-0.5, 0.0]
    assert bars["borrow interest cost"][2]["bottom"] == [0.0, 1.5]
    assert bars["price change"][2]["bottom"] == [2.0, 0.0]
    assert spy.get_call("title")[1][0] == "P&L"
