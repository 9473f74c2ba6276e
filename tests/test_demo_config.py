from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from unittest.mock import MagicMock

import pytest

import smoothie_demo
from smoothie_demo import build_repository, load_config, positions_from_config
from smoothie_yield import Visualizer
from smoothie_yield.config import apply_env_overrides, config_path, default_config

ROOT = Path(__file__).resolve().parents[1]
DEMO = ROOT / "configs" / "demo.toml"
WALLETS = ("GBSMOOTHIEDEMOWALLETA", "GBSMOOTHIEDEMOWALLETB")


def test_loads_config_file() -> None:
    cfg = load_config(DEMO)
    req = cfg["request"]
    assert tuple(req["wallets"]) == WALLETS
    assert req["today"] == "2025-06-30"
    assert req["lp_price"] == pytest.approx(0.6)
    assert len(req["positions"]) == 2
    assert req["backstop_positions"][0]["lp_tokens"] == pytest.approx(303.2)
    assert cfg["apy"]["days"] == 180
    assert cfg["output"]["show"] is False
    assert cfg["output"]["charts"] == ["realized", "claims", "apy", "pnl"]
    assert req["pnl_period"] == "1W"
    # untouched sections keep their defaults
    assert cfg["data"]["actions_csv"].endswith("sample_actions.csv")
    assert Path(cfg["data"]["actions_csv"]).is_file()


def test_missing_file_falls_back_to_defaults(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="smoothie_yield.config"):
        cfg = load_config(tmp_path / "nope.toml")
    assert cfg == default_config()
    assert "Config file not found" in caplog.text
    assert load_config(None) == default_config()


def test_env_overrides_return_a_copy() -> None:
    cfg = load_config(DEMO)
    out = apply_env_overrides(
        cfg,
        {
            "SMOOTHIE_WALLETS": " GA, GB ,,",
            "SMOOTHIE_OUTDIR": "/tmp/reports",
            "SMOOTHIE_TIMEZONE": "Europe/Berlin",
            "SMOOTHIE_ACTIONS_CSV": "actions.csv",
        },
    )
    assert out["request"]["wallets"] == ["GA", "GB"]
    assert out["request"]["timezone"] == "Europe/Berlin"
    assert out["output"]["outdir"] == "/tmp/reports"
    assert out["data"]["actions_csv"] == "actions.csv"
    assert tuple(cfg["request"]["wallets"]) == WALLETS
    assert apply_env_overrides(cfg, {}) == cfg


def test_config_path_prefers_environment() -> None:
    assert config_path(["demo", "a.toml"], {"SMOOTHIE_CONFIG": "b.toml"}) == "b.toml"
    assert config_path(["demo", "a.toml"], {}) == "a.toml"
    assert config_path(["demo"], {}) is None


def test_positions_from_config() -> None:
    positions, backstops = positions_from_config(load_config(DEMO)["request"])
    usdc, xlm = positions
    assert usdc.symbol == "USDC"
    assert usdc.borrow_amount == pytest.approx(151.3)
    assert xlm.borrow_amount == 0.0
    assert backstops[0].shares == 2712345678
    assert backstops[0].cost_basis_lp == 0.0


def test_build_repository_loads_samples() -> None:
    repo = build_repository(default_config()["data"], WALLETS)
    assert repo.users() == list(WALLETS)
    assert len(repo) == 10
    history = repo.get_balance_history(WALLETS[1], "CCW67TSZV3SSS2HXMBQ5JFGCKJNXKZM7UQUWUZPUTHXSTZLEO7SJMI75")
    assert [s.supply_balance for s in history] == [pytest.approx(502.1)]
    debt = repo.get_balance_history(WALLETS[0], "CCW67TSZV3SSS2HXMBQ5JFGCKJNXKZM7UQUWUZPUTHXSTZLEO7SJMI75")
    assert [s.debt_balance for s in debt] == [pytest.approx(200.9)]
    assert repo.get_emission_apy(
        "CAJJZSGMMM3PD7N33TAPHGBUGTB43OC73HVIK2L2G6BNGGGYOSSYBXBD", "backstop", date(2025, 6, 20)
    ) == pytest.approx(10.8)


def test_build_repository_requires_actions(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        build_repository({"actions_csv": str(tmp_path / "missing.csv")}, WALLETS)


def test_main_writes_reports(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    canvas = MagicMock()
    monkeypatch.setattr(Visualizer, "_plt", staticmethod(lambda: canvas))
    monkeypatch.delenv("SMOOTHIE_CONFIG", raising=False)
    monkeypatch.setenv("SMOOTHIE_OUTDIR", str(tmp_path))
    monkeypatch.setattr("sys.argv", ["smoothie_demo", str(DEMO)])

    smoothie_demo.main()

    printed = capsys.readouterr().out
    assert "Wallets: 2" in printed
    assert "Realized P&L" in printed
    assert "supply APY (latest)" in printed
    assert "P&L change 1W" in printed
    assert "over 7 bars" in printed
    assert "backstop BLND emission APY (avg): 11.47%" in printed
    for name in ("cost_basis.csv", "by_asset.csv", "realized_timeseries.csv", "period.csv", "pnl_change.csv"):
        assert (tmp_path / name).is_file()
    saved = [c.args[0] for c in canvas.savefig.call_args_list]
    assert saved == [
        str(tmp_path / "realized.png"),
        str(tmp_path / "pool_claims.png"),
        str(tmp_path / "apy_history.png"),
        str(tmp_path / "pnl_change.png"),
    ]
    canvas.show.assert_not_called()
