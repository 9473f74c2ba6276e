"""Data source adapters used by :mod:`smoothie_yield`."""

from __future__ import annotations

from typing import Protocol, TypeVar

from .base import read_csv_checked
from .csv import (
    BackstopRateCSVSource,
    BalanceSnapshotCSVSource,
    DailyPriceCSVSource,
    DailyRateCSVSource,
    EmissionApyCSVSource,
    UserActionCSVSource,
)

T_co = TypeVar("T_co", covariant=True)


class DataSource(Protocol[T_co]):
    """Adapter protocol returning rows for :class:`InMemoryEventRepository`."""

    def fetch(self) -> list[T_co]: ...


__all__ = [
    "BackstopRateCSVSource",
    "BalanceSnapshotCSVSource",
    "DailyPriceCSVSource",
    "DailyRateCSVSource",
    "DataSource",
    "EmissionApyCSVSource",
    "UserActionCSVSource",
    "read_csv_checked",
]
