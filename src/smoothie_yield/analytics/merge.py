"""Combine per-wallet position ledgers into one ledger per pool-asset key."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import TypeVar

from ..core.models import PositionLedger

logger = logging.getLogger(__name__)

K = TypeVar("K")


def is_wallet_excluded(
    key: K,
    wallet: str,
    active_wallets_per_key: Mapping[K, Sequence[str]] | None,
) -> bool:
    """True when ``key`` lists active wallets and ``wallet`` is not among them."""

    if not active_wallets_per_key:
        return False
    active = active_wallets_per_key.get(key)
    return bool(active) and wallet not in active


def merge_across_wallets(
    per_wallet: Mapping[str, Mapping[K, PositionLedger]],
    active_wallets_per_key: Mapping[K, Sequence[str]] | None = None,
) -> dict[K, PositionLedger]:
    """Concatenate every wallet's deposits and withdrawals per key.

    A wallet's events for a key are skipped entirely when
    ``active_wallets_per_key`` maps that key to a non-empty wallet list that
    does not contain the wallet (its position there is closed). Keys without an
    entry, or with an empty list, keep every wallet. Wallet order is preserved
    so the merged event order is deterministic.

    Must run before cost-basis computation; average cost depends on which
    wallets are included.
    """

    merged: dict[K, PositionLedger] = {}
    for wallet, ledgers in per_wallet.items():
        for key, ledger in ledgers.items():
            if is_wallet_excluded(key, wallet, active_wallets_per_key):
                logger.debug("Skipping closed position of %s at %s", wallet, key)
                continue
            existing = merged.get(key)
            merged[key] = ledger if existing is None else existing.extended(ledger)
    return merged


__all__ = ["is_wallet_excluded", "merge_across_wallets"]
