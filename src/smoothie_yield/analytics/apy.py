"""Historical APY from daily accrual-rate and share-rate snapshots."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence

import pandas as pd

from ..core.constants import DAYS_PER_YEAR
from ..core.models import ApyDataPoint, BackstopDailyRate, DailyRate, RateSample

logger = logging.getLogger(__name__)


def annualize(ratio: float, days: float = 1.0) -> float:
    """Compound a growth ``ratio`` observed over ``days`` to an annual percentage.

    Ratios whose compounded value leaves the float range give ``math.inf``.
    """

    if days <= 0:
        raise ValueError("days must be positive")
    try:
        return (math.pow(ratio, DAYS_PER_YEAR / days) - 1.0) * 100.0
    except OverflowError:
        return math.inf


def _sorted(samples: Iterable[RateSample]) -> list[RateSample]:
    return sorted(samples, key=lambda s: s.date)


def share_rates_to_apy(samples: Iterable[RateSample]) -> list[ApyDataPoint]:
    """APY per consecutive pair of share rates (backstop, LP price).

    The first sample is the baseline and emits no point. A pair with a missing
    or non-positive rate, or one whose APY is not finite, repeats the last APY.
    Every value is floored at 0.
    """

    rows = _sorted(samples)
    out: list[ApyDataPoint] = []
    last_apy = 0.0
    for prev, curr in zip(rows, rows[1:]):
        if prev.rate and curr.rate and prev.rate > 0 and curr.rate > 0:
            apy = annualize(curr.rate / prev.rate)
            if math.isfinite(apy):
                last_apy = max(0.0, apy)
            else:
                logger.warning("Skipping share rate jump %s -> %s on %s", prev.rate, curr.rate, curr.date)
        out.append(ApyDataPoint(date=curr.date, apy=last_apy))
    return out


def _real_row_apys(rows: Sequence[RateSample]) -> list[float | None]:
    """First pass: APY of every real row against the previous real row, ``None`` for gaps."""

    baseline = next(
        (i for i, s in enumerate(rows) if s.has_real_data and s.rate is not None), 0
    )
    apys: list[float | None] = [None] * len(rows)
    last_real = baseline
    for i in range(1, len(rows)):
        curr = rows[i]
        if not curr.has_real_data or curr.rate is None:
            continue
        prev = rows[last_real]
        apy = 0.0
        if prev.rate and prev.rate > 0:
            days = max(1, round((curr.date - prev.date).days))
            daily = math.pow(curr.rate / prev.rate, 1.0 / days)
            apy = annualize(daily)
            if not math.isfinite(apy):
                logger.warning("Skipping rate jump %s -> %s on %s", prev.rate, curr.rate, curr.date)
                apy = 0.0
            apy = max(0.0, apy)
        apys[i] = apy
        last_real = i
    return apys


def rates_to_apy(samples: Iterable[RateSample]) -> list[ApyDataPoint]:
    """Gap-aware APY from accrual rates (``b_rate``).

    Forward-filled rows (``has_real_data=False``) get the APY of the real row
    that closes their gap, which spreads the return evenly over the elapsed
    days. Forward-filled rows after the last real row repeat the last non-zero
    APY before them. The first sample is the baseline and emits no point.
    """

    rows = _sorted(samples)
    if len(rows) < 2:
        return []

    apys = _real_row_apys(rows)

    # Second pass, right to left: fill each gap from the real row closing it.
    filled: list[float] = [0.0] * len(rows)
    closing: float | None = None
    trailing_start = len(rows)
    for i in range(len(rows) - 1, 0, -1):
        if apys[i] is not None:
            closing = apys[i]
            filled[i] = apys[i]  # type: ignore[assignment]
        elif closing is not None:
            filled[i] = closing
        else:
            trailing_start = i

    if trailing_start < len(rows):
        carried = next((a for a in reversed(filled[1:trailing_start]) if a > 0), 0.0)
        logger.debug("Carrying APY %.4f over %d trailing forward-filled rows", carried, len(rows) - trailing_start)
        for i in range(trailing_start, len(rows)):
            filled[i] = carried

    return [ApyDataPoint(date=rows[i].date, apy=filled[i]) for i in range(1, len(rows))]


def daily_rates_to_samples(rows: Iterable[DailyRate]) -> list[RateSample]:
    """Store ``b_rate`` rows as samples; a missing ``rate_timestamp`` marks a forward fill."""

    return [
        RateSample(date=r.rate_date, rate=r.b_rate, has_real_data=r.rate_timestamp is not None)
        for r in rows
    ]


def backstop_rates_to_samples(rows: Iterable[BackstopDailyRate]) -> list[RateSample]:
    return [RateSample(date=r.rate_date, rate=r.share_rate) for r in rows]


def apy_series(points: Iterable[ApyDataPoint], name: str = "apy") -> pd.Series:
    """APY points as a float series on a ``date`` index."""

    pts = list(points)
    index = pd.DatetimeIndex([pd.Timestamp(p.date) for p in pts], name="date")
    return pd.Series([p.apy for p in pts], index=index, name=name, dtype=float)


__all__ = [
    "annualize",
    "apy_series",
    "backstop_rates_to_samples",
    "daily_rates_to_samples",
    "rates_to_apy",
    "share_rates_to_apy",
]
