"""Historical daily USD prices with forward fill and SDK fallback."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date

import pandas as pd

from .models import DailyPrice, PriceSource


class PriceBook:
    """Daily token prices indexed per token for as-of lookups.

    Resolution order for a ``(token, day)`` lookup:

    1. exact match on ``day`` (``daily_token_prices``),
    2. most recent earlier price (``forward_fill``),
    3. the caller-provided SDK price (``sdk_fallback``).
    """

    def __init__(self, prices: Iterable[DailyPrice] | None = None) -> None:
        self._series: dict[str, pd.Series] = {}
        if prices:
            self.extend(prices)

    def extend(self, prices: Iterable[DailyPrice]) -> None:
        rows = [p for p in prices if p.usd_price is not None and p.usd_price > 0]
        if not rows:
            return
        df = pd.DataFrame(
            {
                "token": [p.token_address for p in rows],
                "day": pd.to_datetime([p.price_date for p in rows]),
                "price": [float(p.usd_price) for p in rows],
            }
        )
        for token, group in df.groupby("token"):
            new = group.set_index("day")["price"]
            existing = self._series.get(str(token))
            merged = new if existing is None else pd.concat([existing, new])
            # Later rows win for duplicate days.
            merged = merged[~merged.index.duplicated(keep="last")].sort_index()
            self._series[str(token)] = merged

    def tokens(self) -> list[str]:
        return sorted(self._series)

    def resolve(self, token: str, day: date, fallback: float = 0.0) -> tuple[float, PriceSource]:
        series = self._series.get(token)
        if series is not None and not series.empty:
            ts = pd.Timestamp(day)
            if ts in series.index:
                return float(series.loc[ts]), "daily_token_prices"
            earlier = series.loc[:ts]
            if not earlier.empty:
                return float(earlier.iloc[-1]), "forward_fill"
        return float(fallback or 0.0), "sdk_fallback"

    def __len__(self) -> int:
        return sum(len(s) for s in self._series.values())


__all__ = ["PriceBook"]
