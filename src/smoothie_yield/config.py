"""TOML configuration with environment overrides for the Smoothie demo."""

from __future__ import annotations

import copy
import logging
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, cast

logger = logging.getLogger(__name__)

# Sample CSVs ship next to the demo script in a source checkout.
SAMPLE_DIR = Path(__file__).resolve().parents[1]

ENV_PREFIX = "SMOOTHIE_"


def default_config() -> dict[str, Any]:
    return {
        "data": {
            "actions_csv": str(SAMPLE_DIR / "sample_actions.csv"),
            "prices_csv": str(SAMPLE_DIR / "sample_prices.csv"),
            "rates_csv": str(SAMPLE_DIR / "sample_rates.csv"),
            "backstop_rates_csv": str(SAMPLE_DIR / "sample_backstop_rates.csv"),
            "balances_csv": str(SAMPLE_DIR / "sample_balances.csv"),
            "emission_apy_csv": str(SAMPLE_DIR / "sample_emission_apy.csv"),
        },
        "request": {
            "wallets": [],
            "timezone": "UTC",
            "today": None,
            "period": "1M",
            "pnl_period": "1W",
            "sdk_prices": {},
            "lp_price": 0.0,
            "active_wallets": {},
            "positions": [],
            "backstop_positions": [],
        },
        "apy": {"pool": None, "asset": None, "days": 180},
        "output": {"outdir": None, "show": False, "charts": ["realized", "claims", "apy", "pnl"]},
    }


def load_config(path: str | Path | None) -> dict[str, Any]:
    """Load configuration from a TOML file and merge with defaults.

    Parameters
    ----------
    path:
        Optional path to a configuration file. When ``None`` or missing, the
        built-in defaults are used.

    Returns
    -------
    dict[str, Any]
        Configuration dictionary with file sections merged over the defaults
        section by section.
    """

    cfg = default_config()
    cfg_path = Path(path) if path else None

    if cfg_path and cfg_path.is_file():
        with open(cfg_path, "rb") as f:
            file_cfg = tomllib.load(f)
        for k, v in file_cfg.items():
            if isinstance(v, dict) and isinstance(cfg.get(k), dict):
                cast(dict, cfg[k]).update(v)
            else:
                cfg[k] = v
    elif cfg_path:
        logger.warning("Config file not found at %s. Using defaults.", cfg_path)

    return cfg


def apply_env_overrides(cfg: Mapping[str, Any], environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Return a copy of ``cfg`` with ``SMOOTHIE_*`` environment variables applied.

    ``SMOOTHIE_ACTIONS_CSV``, ``SMOOTHIE_PRICES_CSV``, ``SMOOTHIE_OUTDIR``,
    ``SMOOTHIE_TIMEZONE`` and ``SMOOTHIE_WALLETS`` (comma separated).
    """

    env = os.environ if environ is None else environ
    out = copy.deepcopy(dict(cfg))
    if actions := env.get(f"{ENV_PREFIX}ACTIONS_CSV"):
        out.setdefault("data", {})["actions_csv"] = actions
    if prices := env.get(f"{ENV_PREFIX}PRICES_CSV"):
        out.setdefault("data", {})["prices_csv"] = prices
    if outdir := env.get(f"{ENV_PREFIX}OUTDIR"):
        out.setdefault("output", {})["outdir"] = outdir
    if tz := env.get(f"{ENV_PREFIX}TIMEZONE"):
        out.setdefault("request", {})["timezone"] = tz
    if wallets := env.get(f"{ENV_PREFIX}WALLETS"):
        out.setdefault("request", {})["wallets"] = [w.strip() for w in wallets.split(",") if w.strip()]
    return out


def config_path(argv: list[str], environ: Mapping[str, str] | None = None) -> str | None:
    """``SMOOTHIE_CONFIG`` or the first CLI argument."""

    env = os.environ if environ is None else environ
    return env.get(f"{ENV_PREFIX}CONFIG") or (argv[1] if len(argv) > 1 else None)


__all__ = ["apply_env_overrides", "config_path", "default_config", "load_config"]
