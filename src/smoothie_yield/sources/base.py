"""Base utilities for Smoothie CSV data sources."""

from __future__ import annotations

import math
from collections.abc import Iterable
from pathlib import Path

import pandas as pd


def read_csv_checked(path: str | Path, required: Iterable[str]) -> pd.DataFrame:
    """Read ``path`` and raise ``ValueError`` when a required column is absent."""

    df = pd.read_csv(path)
    missing = set(required).difference(df.columns)
    if missing:
        raise ValueError(f"CSV missing columns: {sorted(missing)}")
    return df


def opt_float(value: object) -> float | None:
    """``float(value)`` or ``None`` for blanks and ``NaN``."""

    if value is None:
        return None
    try:
        out = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return None if math.isnan(out) else out


def opt_str(value: object) -> str | None:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return None
    text = str(value).strip()
    return text or None


__all__ = ["opt_float", "opt_str", "read_csv_checked"]
