from __future__ import annotations

import itertools
import logging
from datetime import date

import pytest

from smoothie_yield.analytics.cost_basis import (
    compute_cost_basis,
    compute_cost_bases,
    cost_basis_invariant_residual,
    reprice_same_day,
    untracked_cost_basis,
)
from smoothie_yield.core.models import PoolAssetKey, PositionLedger, TokenEvent

TODAY = date(2025, 6, 30)


def ev(day: int, tokens: float, price: float, month: int = 6) -> TokenEvent:
    return TokenEvent.priced(date(2025, month, day), tokens, price)


def test_empty_ledger_yields_no_record() -> None:
    assert compute_cost_basis([], [], 1.0, today=TODAY) is None


def test_same_day_deposit_uses_today_price() -> None:
    record = compute_cost_basis([ev(30, 1000, 1.00)], [], 1.05, today=TODAY)
    assert record is not None
    assert record.cost_basis_historical == pytest.approx(1050.0)
    assert record.weighted_avg_deposit_price == pytest.approx(1.05)
    assert record.net_deposited_tokens == pytest.approx(1000.0)


def test_deposit_then_partial_withdrawal() -> None:
    record = compute_cost_basis([ev(1, 1000, 1.00)], [ev(10, 400, 1.30)], 1.2, today=TODAY)
    assert record is not None
    assert record.weighted_avg_deposit_price == pytest.approx(1.00)
    assert record.net_deposited_tokens == pytest.approx(600.0)
    assert record.cost_basis_historical == pytest.approx(600.0)


def test_withdrawals_reduce_basis_at_average_cost() -> None:
    record = compute_cost_basis(
        [ev(1, 100, 2.0), ev(2, 100, 4.0)], [ev(3, 50, 10.0)], 5.0, today=TODAY
    )
    assert record is not None
    assert record.weighted_avg_deposit_price == pytest.approx(3.0)
    assert record.cost_basis_historical == pytest.approx(600.0 - 150.0)
    assert record.total_deposited_usd == pytest.approx(600.0)
    assert record.total_withdrawn_tokens == pytest.approx(50.0)


def test_invariant_holds_for_every_ordering() -> None:
    deposits = [ev(1, 120.5, 0.98), ev(5, 33.3, 1.02), ev(9, 7.77, 1.11), ev(12, 500, 0.995)]
    withdrawals = [ev(6, 40, 1.0), ev(15, 100.25, 1.2)]
    results = []
    for dep_order in itertools.permutations(deposits):
        for wd_order in itertools.permutations(withdrawals):
            record = compute_cost_basis(dep_order, wd_order, 1.0, today=TODAY)
            assert record is not None
            assert cost_basis_invariant_residual(record) == pytest.approx(0.0, abs=1e-9)
            results.append(record)
    first = results[0]
    for record in results[1:]:
        assert record.cost_basis_historical == pytest.approx(first.cost_basis_historical)
        assert record.weighted_avg_deposit_price == pytest.approx(first.weighted_avg_deposit_price)
        assert record.net_deposited_tokens == pytest.approx(first.net_deposited_tokens)


def test_over_withdrawal_is_not_clamped(caplog: pytest.LogCaptureFixture) -> None:
    key = PoolAssetKey("P", "A")
    with caplog.at_level(logging.DEBUG, logger="smoothie_yield.analytics.cost_basis"):
        record = compute_cost_basis([ev(1, 10, 1.0)], [ev(2, 15, 1.0)], 1.0, today=TODAY, key=key)
    assert record is not None
    assert record.net_deposited_tokens == pytest.approx(-5.0)
    assert record.cost_basis_historical == pytest.approx(-5.0)
    assert record.key == key
    assert "Over-withdrawn" in caplog.text


def test_withdrawals_only_fall_back_to_today_price() -> None:
    record = compute_cost_basis([], [ev(2, 10, 3.0)], 2.0, today=TODAY)
    assert record is not None
    assert record.weighted_avg_deposit_price == 2.0
    assert record.net_deposited_tokens == -10.0


def test_untracked_cost_basis_uses_today_price() -> None:
    record = untracked_cost_basis(1.5, key=PoolAssetKey("P", "A"))
    assert record.weighted_avg_deposit_price == 1.5
    assert record.net_deposited_tokens == 0.0
    assert record.cost_basis_historical == 0.0
    assert record.pool_id == "P"


def test_reprice_same_day_only_touches_today() -> None:
    out = reprice_same_day([ev(29, 1, 1.0), ev(30, 1, 1.0)], TODAY, 2.0)
    assert [e.price_at_event for e in out] == [1.0, 2.0]
    assert out[1].price_source == "sdk_fallback"


def test_same_day_deposit_keeps_price_without_today_price() -> None:
    assert reprice_same_day([ev(30, 1, 1.0)], TODAY, 0.0) == [ev(30, 1, 1.0)]
    record = compute_cost_basis([ev(1, 10, 1.0), ev(30, 10, 1.2)], [], 0.0, today=TODAY)
    assert record is not None
    assert record.cost_basis_historical == pytest.approx(22.0)
    assert record.weighted_avg_deposit_price == pytest.approx(1.1)


def test_compute_cost_bases_prices_each_key() -> None:
    a = PoolAssetKey("P", "A")
    b = PoolAssetKey("P", "B")
    ledgers = {
        b: PositionLedger(deposits=(ev(30, 10, 1.0),)),
        a: PositionLedger(deposits=(ev(1, 5, 2.0),)),
        PoolAssetKey("P", "C"): PositionLedger(),
    }
    records = compute_cost_bases(ledgers, {"B": 3.0}, today=TODAY)
    assert list(records) == [a, b]
    assert records[a].cost_basis_historical == pytest.approx(10.0)
    assert records[b].cost_basis_historical == pytest.approx(30.0)
    assert records[b].asset_address == "B"
