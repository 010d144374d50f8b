"""Static tier catalog — implements TierPort.

Holds the plan definitions and which plan each account is on. Assignments
live in the `account_tiers` table when a TierDB is given (the bot always
gives one); without it they are kept in memory, which is what tests use.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.data.models import UNLIMITED, TierLimits

if TYPE_CHECKING:
    from src.data.db import TierDB

logger = logging.getLogger(__name__)

DEFAULT_TIERS: dict[str, TierLimits] = {
    "free": TierLimits(
        name="free",
        recording_count=5,
        recording_duration_minutes=5,
        retention_days=30,
        comment_count=10,
        has_watchers=False,
    ),
    "premium": TierLimits(
        name="premium",
        recording_count=50,
        recording_duration_minutes=60,
        retention_days=365,
        comment_count=UNLIMITED,
        has_watchers=True,
    ),
    "family": TierLimits(
        name="family",
        recording_count=UNLIMITED,
        recording_duration_minutes=UNLIMITED,
        retention_days=UNLIMITED,
        comment_count=UNLIMITED,
        has_watchers=True,
    ),
}


class TierCatalog:
    """TierPort backed by the plan table and stored account assignments."""

    def __init__(
        self,
        tiers: dict[str, TierLimits] | None = None,
        default_tier: str | None = None,
        store: TierDB | None = None,
    ) -> None:
        if default_tier is None:
            from src.config import settings
            default_tier = settings.DEFAULT_TIER

        self._tiers = dict(tiers or DEFAULT_TIERS)
        if default_tier not in self._tiers:
            raise ValueError(f"Unknown default tier: {default_tier!r}")
        self._default_tier = default_tier
        self._store = store
        self._assignments: dict[int, str] = {}

    def get_tier(self, account_id: int) -> str:
        if self._store is not None:
            tier = self._store.get(account_id)
        else:
            tier = self._assignments.get(account_id)
        if tier is None:
            return self._default_tier
        if tier not in self._tiers:
            logger.warning("Account %d is on retired tier '%s'; using default", account_id, tier)
            return self._default_tier
        return tier

    def get_limits(self, tier: str) -> TierLimits:
        try:
            return self._tiers[tier]
        except KeyError:
            raise ValueError(f"Unknown tier: {tier!r}") from None

    def set_tier(self, account_id: int, tier: str) -> None:
        """Move an account to another plan (e.g. after an upgrade)."""
        if tier not in self._tiers:
            raise ValueError(f"Unknown tier: {tier!r}")
        previous = self.get_tier(account_id)
        if self._store is not None:
            self._store.set(account_id, tier)
        else:
            self._assignments[account_id] = tier
        logger.info("Account %d moved from tier '%s' to '%s'", account_id, previous, tier)
