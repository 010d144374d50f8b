"""Tier port — where billing tiers and their limits come from.

The core never decides an account's plan itself; it asks this port.
"""

from __future__ import annotations

from typing import Protocol

from src.data.models import TierLimits


class TierPort(Protocol):
    """Abstract billing/tier source used by the usage ledger."""

    def get_tier(self, account_id: int) -> str: ...

    def get_limits(self, tier: str) -> TierLimits: ...
