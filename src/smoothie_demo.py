from __future__ import annotations

import logging
import sys
from collections.abc import Mapping, Sequence
from datetime import date
from pathlib import Path
from typing import Any

from smoothie_yield import (
    ApyHistoryRequest,
    BackstopPosition,
    CostBasisRequest,
    EmissionApyRequest,
    InMemoryEventRepository,
    PeriodRequest,
    PnlChangeRequest,
    PositionSnapshot,
    TTLCache,
    Visualizer,
    YieldPipeline,
)
from smoothie_yield.config import apply_env_overrides, config_path, load_config
from smoothie_yield.core.dates import parse_date
from smoothie_yield.reporting import portfolio_report
from smoothie_yield.sources import (
    BackstopRateCSVSource,
    BalanceSnapshotCSVSource,
    DailyPriceCSVSource,
    DailyRateCSVSource,
    EmissionApyCSVSource,
    UserActionCSVSource,
)

logger = logging.getLogger(__name__)


def _existing(path: Any) -> Path | None:
    if not path:
        return None
    p = Path(str(path))
    if not p.is_file():
        logger.warning("Skipping missing data file %s", p)
        return None
    return p


def build_repository(
    data_cfg: Mapping[str, Any],
    wallets: Sequence[str],
    *,
    timezone: str = "UTC",
    today: date | None = None,
) -> InMemoryEventRepository:
    """Load the configured CSV files into an in-memory event store."""

    actions_path = _existing(data_cfg.get("actions_csv"))
    if actions_path is None:
        raise FileNotFoundError(f"Actions CSV not found: {data_cfg.get('actions_csv')}")
    repo = InMemoryEventRepository(
        UserActionCSVSource(actions_path).fetch(), timezone=timezone, today=today
    )
    if p := _existing(data_cfg.get("prices_csv")):
        repo.add_prices(DailyPriceCSVSource(p).fetch())
    if p := _existing(data_cfg.get("rates_csv")):
        repo.add_daily_rates(DailyRateCSVSource(p).fetch())
    if p := _existing(data_cfg.get("backstop_rates_csv")):
        repo.add_backstop_rates(BackstopRateCSVSource(p).fetch())
    if p := _existing(data_cfg.get("emission_apy_csv")):
        repo.add_emission_apy(EmissionApyCSVSource(p).fetch())
    if p := _existing(data_cfg.get("balances_csv")):
        for wallet in wallets:
            repo.add_balance_snapshots(wallet, BalanceSnapshotCSVSource(p, user=wallet).fetch())
    return repo


def positions_from_config(
    request_cfg: Mapping[str, Any],
) -> tuple[list[PositionSnapshot], list[BackstopPosition]]:
    positions = [
        PositionSnapshot(
            pool_id=str(p["pool_id"]),
            asset_address=str(p["asset_address"]),
            supply_amount=float(p.get("supply_amount", 0.0)),
            usd_price=float(p.get("usd_price", 0.0)),
            borrow_amount=float(p.get("borrow_amount", 0.0)),
            symbol=p.get("symbol"),
        )
        for p in request_cfg.get("positions", [])
    ]
    backstops = [
        BackstopPosition(
            pool_id=str(b["pool_id"]),
            shares=int(b.get("shares", 0)),
            lp_tokens=float(b.get("lp_tokens", 0.0)),
            q4w_shares=int(b.get("q4w_shares", 0)),
            cost_basis_lp=float(b.get("cost_basis_lp", 0.0)),
        )
        for b in request_cfg.get("backstop_positions", [])
    ]
    return positions, backstops


def main() -> None:
    """Run the demo using configuration from file or environment variables."""

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    cfg = apply_env_overrides(load_config(config_path(sys.argv)))

    req_cfg = cfg.get("request", {})
    timezone = str(req_cfg.get("timezone") or "UTC")
    today = parse_date(req_cfg["today"]) if req_cfg.get("today") else None
    wallets = tuple(str(w) for w in req_cfg.get("wallets", []))

    repo = build_repository(cfg.get("data", {}), wallets, timezone=timezone, today=today)
    if not wallets:
        wallets = tuple(repo.users())
    if not wallets:
        print("No wallets in the action ledger; nothing to do.")
        return

    positions, backstops = positions_from_config(req_cfg)
    sdk_prices = {str(k): float(v) for k, v in req_cfg.get("sdk_prices", {}).items()}
    lp_price = float(req_cfg.get("lp_price", 0.0))

    pipeline = YieldPipeline(repo, cache=TTLCache(300), today=today)
    request = CostBasisRequest(
        user_addresses=wallets,
        sdk_prices=sdk_prices,
        active_wallets=req_cfg.get("active_wallets", {}),
        timezone=timezone,
    )
    result = pipeline.run(request, positions, backstops, lp_price)

    totals = result.breakdown.summary.totals
    print(f"Wallets: {len(wallets)}  Open positions: {len(result.breakdown.summary.rows)}")
    print(
        "Since inception: earned ${:,.2f} (protocol ${:,.2f}, price ${:,.2f})".format(
            totals.get("total_earned_usd", 0.0),
            totals.get("protocol_yield_usd", 0.0),
            totals.get("price_change_usd", 0.0),
        )
    )
    realized = result.realized.totals
    print(
        f"Realized P&L: ${realized.realized_pnl:,.2f} over {realized.days_active} days"
        + (f" (ROI {realized.roi_percent:.2f}%)" if realized.roi_percent is not None else "")
    )

    period = pipeline.period_breakdown(
        PeriodRequest(
            user_addresses=wallets,
            period=str(req_cfg.get("period") or "1M"),
            sdk_prices=sdk_prices,
            current_balances={p.key: p.supply_amount for p in positions if p.supply_amount > 0},
            backstop_positions={b.pool_id: b.lp_tokens for b in backstops if b.lp_tokens > 0},
            lp_token_price=lp_price,
            timezone=timezone,
        )
    )
    print(
        f"Period {req_cfg.get('period') or '1M'} ({period.period_days} days): "
        f"earned ${period.totals.get('totalEarnedUsd', 0.0):,.2f}"
    )

    pnl_period = str(req_cfg.get("pnl_period") or "1W")
    pnl = pipeline.pnl_change_chart(
        PnlChangeRequest(
            user_addresses=wallets,
            period=pnl_period,
            sdk_prices=sdk_prices,
            current_balances={p.key: p.supply_amount for p in positions if p.supply_amount > 0},
            current_borrow_balances={p.key: p.borrow_amount for p in positions if p.borrow_amount > 0},
            backstop_positions={b.pool_id: b.lp_tokens for b in backstops if b.lp_tokens > 0},
            sdk_lp_price=lp_price,
            timezone=timezone,
        ),
        live_fraction=1.0 if today else None,
    )
    print(f"P&L change {pnl_period}: ${sum(p.total_usd for p in pnl.points):,.2f} over {len(pnl.points)} bars")

    apy_cfg = cfg.get("apy", {})
    histories: dict[str, list] = {}
    if apy_cfg.get("pool"):
        days = int(apy_cfg.get("days", 180))
        pool = str(apy_cfg["pool"])
        if apy_cfg.get("asset"):
            histories["supply"] = pipeline.apy_history(
                ApyHistoryRequest(pool_id=pool, asset_address=str(apy_cfg["asset"]), days=days), timezone
            )
        histories["backstop"] = pipeline.apy_history(ApyHistoryRequest(pool_id=pool, days=days), timezone)
        for label, points in histories.items():
            if points:
                print(f"{label} APY (latest): {points[-1].apy:.2f}%")
        emissions = pipeline.emission_apy_history(EmissionApyRequest(pool_id=pool, apy_type="backstop"))
        if emissions.history:
            print(f"backstop BLND emission APY (avg): {emissions.avg_30d:.2f}%")

    out = cfg.get("output", {})
    outdir = Path(out["outdir"]) if out.get("outdir") else None
    show = bool(out.get("show", True)) if not outdir else False
    charts = out.get("charts", [])

    if outdir:
        paths = portfolio_report(result, outdir, period=period, pnl_change=pnl)
        print(f"Wrote {len(paths)} reports to {outdir}")

    if not (outdir or show):
        return
    if "realized" in charts:
        Visualizer.line_realized(
            result.realized,
            save_path=str(outdir / "realized.png") if outdir else None,
            show=show,
        )
    if "claims" in charts:
        Visualizer.stacked_pool_claims(
            result.realized,
            save_path=str(outdir / "pool_claims.png") if outdir else None,
            show=show,
        )
    if "apy" in charts and histories:
        Visualizer.line_apy(
            histories,
            save_path=str(outdir / "apy_history.png") if outdir else None,
            show=show,
        )
    if "pnl" in charts:
        Visualizer.bar_pnl_change(
            pnl.points,
            title=f"P&L change ({pnl_period})",
            save_path=str(outdir / "pnl_change.png") if outdir else None,
            show=show,
        )


__all__ = ["build_repository", "load_config", "main", "positions_from_config"]


if __name__ == "__main__":
    main()
