from __future__ import annotations

from datetime import UTC, date, datetime

import pytest

from smoothie_yield.core.constants import LP_TOKEN_ADDRESS
from smoothie_yield.core.models import (
    ApyDataPoint,
    BackstopPosition,
    CostBasisRecord,
    EmissionApyHistory,
    PeriodYieldBreakdown,
    PoolAssetKey,
    PositionLedger,
    TokenEvent,
    UserAction,
)


def test_pool_asset_key_parses_on_first_dash_only() -> None:
    key = PoolAssetKey.parse("POOL1-ASSET-WITH-DASH")
    assert key.pool_id == "POOL1"
    assert key.asset_address == "ASSET-WITH-DASH"
    assert key.composite == "POOL1-ASSET-WITH-DASH"
    assert str(key) == key.composite


@pytest.mark.parametrize("raw", ["nodash", "-ASSET", "POOL-"])
def test_pool_asset_key_rejects_malformed(raw: str) -> None:
    with pytest.raises(ValueError):
        PoolAssetKey.parse(raw)


def test_pool_asset_key_equality_and_ordering() -> None:
    a = PoolAssetKey("P1", "A")
    assert a == PoolAssetKey("P1", "A")
    assert len({a, PoolAssetKey("P1", "A")}) == 1
    assert sorted([PoolAssetKey("P2", "A"), PoolAssetKey("P1", "B"), a]) == [
        a,
        PoolAssetKey("P1", "B"),
        PoolAssetKey("P2", "A"),
    ]
    assert PoolAssetKey.backstop("P1").asset_address == LP_TOKEN_ADDRESS


def test_token_event_values() -> None:
    event = TokenEvent.priced(date(2025, 1, 2), 250, 1.2, "forward_fill")
    assert event.usd_value == pytest.approx(300.0)
    assert event.price_source == "forward_fill"

    repriced = event.repriced(2.0)
    assert repriced.usd_value == pytest.approx(500.0)
    assert repriced.price_source == "sdk_fallback"
    assert event.price_at_event == 1.2


def test_position_ledger_helpers() -> None:
    d1 = TokenEvent.priced(date(2025, 1, 1), 10, 1.0)
    d2 = TokenEvent.priced(date(2025, 1, 5), 5, 1.0)
    w1 = TokenEvent.priced(date(2025, 1, 5), 3, 1.0)
    ledger = PositionLedger(deposits=(d1,)).extended(PositionLedger((d2,), (w1,)))
    assert ledger.deposits == (d1, d2)
    assert ledger.withdrawals == (w1,)
    assert not ledger.is_empty
    assert PositionLedger().is_empty

    recent = ledger.since(date(2025, 1, 1))
    assert recent.deposits == (d2,)
    assert recent.withdrawals == (w1,)

    window = ledger.within(date(2025, 1, 2), date(2025, 1, 5))
    assert window.deposits == (d2,)
    assert window.withdrawals == (w1,)
    assert ledger.within(date(2025, 1, 2), date(2025, 1, 4)).is_empty


def test_to_dict_uses_camel_case_and_iso_dates() -> None:
    record = CostBasisRecord(
        asset_address="A",
        pool_id="P",
        cost_basis_historical=600.0,
        weighted_avg_deposit_price=1.0,
        net_deposited_tokens=600.0,
    )
    data = record.to_dict()
    assert data["costBasisHistorical"] == 600.0
    assert data["weightedAvgDepositPrice"] == 1.0
    assert data["poolId"] == "P"

    event = TokenEvent.priced(date(2025, 3, 9), 1, 1.0)
    assert event.to_dict()["date"] == "2025-03-09"

    period = PeriodYieldBreakdown(
        key=PoolAssetKey("P", "A"),
        tokens_at_start=1.0,
        tokens_now=1.0,
        net_deposited_in_period=0.0,
        interest_earned_tokens=0.0,
        price_at_start=1.0,
        price_now=1.0,
        price_source="daily_token_prices",
        value_at_start=1.0,
        value_now=1.0,
        protocol_yield_usd=0.0,
        price_change_usd=0.0,
        total_earned_usd=0.0,
        total_earned_percent=0.0,
    )
    assert period.to_dict()["key"] == "P-A"


def test_backstop_position_serialises_shares_as_strings() -> None:
    big = 123_456_789_012_345_678_901
    pos = BackstopPosition(pool_id="P", shares=big, lp_tokens=12.5, q4w_shares=7)
    data = pos.to_dict()
    assert data["shares"] == str(big)
    assert data["q4wShares"] == "7"
    assert data["lpTokens"] == 12.5

    restored = BackstopPosition.from_dict(data)
    assert restored.shares == big
    assert restored == pos


def test_user_action_amount_prefers_claim_then_underlying() -> None:
    at = datetime(2025, 1, 1, tzinfo=UTC)
    claim = UserAction("1", "P", "claim", at, "U", claim_amount=3.0, amount_underlying=9.0)
    supply = UserAction("2", "P", "supply", at, "U", amount_underlying=9.0, amount_tokens=8.0)
    bare = UserAction("3", "P", "backstop_deposit", at, "U", amount_tokens=8.0)
    assert claim.amount == 3.0
    assert supply.amount == 9.0
    assert bare.amount == 8.0
    assert UserAction("4", "P", "supply", at, "U").amount == 0.0


def test_emission_history_serialises_average_key() -> None:
    history = EmissionApyHistory(history=(ApyDataPoint(date(2025, 1, 2), 3.5),), avg_30d=3.5)
    assert history.to_dict() == {"history": [{"date": "2025-01-02", "apy": 3.5}], "avg30d": 3.5}
