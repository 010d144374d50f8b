"""
PACT Bridge — Usage Ledger.

Tracks recordings, minutes and comments per account per calendar-month
billing period against the limits of the account's tier, and answers the
retention questions ("how many days until this recording expires?").

Quota checks that gate a new recording go through `record_usage`, a single
conditional increment at the storage layer, so two devices starting at the
same moment cannot both slip under the limit.
"""

from __future__ import annotations

import calendar
import logging
import sqlite3
from datetime import date, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING

from src.data.models import UNLIMITED

if TYPE_CHECKING:
    from src.data.db import SessionDB, UsageDB
    from src.data.models import TierLimits, UsageRecord
    from src.ports.tier_port import TierPort

logger = logging.getLogger(__name__)

_NEAR_LIMIT_RATIO = 0.8


class LimitStatus(Enum):
    OK = "ok"
    NEAR = "near"
    OVER = "over"


def period_bounds(day: date) -> tuple[date, date]:
    """Return the (first, last) day of the calendar month containing `day`."""
    last_day = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last_day)


def recording_limit_status(elapsed_seconds: int, max_seconds: int) -> LimitStatus:
    """Classify a running recording against its per-recording length limit."""
    if max_seconds == UNLIMITED:
        return LimitStatus.OK
    if elapsed_seconds >= max_seconds:
        return LimitStatus.OVER
    if elapsed_seconds > max_seconds * _NEAR_LIMIT_RATIO:
        return LimitStatus.NEAR
    return LimitStatus.OK


class UsageLedger:
    """Quota gate and usage accounting for recordings."""

    def __init__(
        self,
        usage_db: UsageDB,
        tiers: TierPort,
        session_db: SessionDB | None = None,
    ) -> None:
        self._db = usage_db
        self._tiers = tiers
        self._session_db = session_db

    # ------------------------------------------------------------------
    # Periods and limits
    # ------------------------------------------------------------------

    def current_record(self, account_id: int, today: date | None = None) -> UsageRecord:
        """Return the record covering `today`, opening it with zero counters if needed.

        The tier is stamped on the record when it is created and never changes
        afterwards; a plan change shows up on the next period's record.
        """
        today = today or date.today()
        start, end = period_bounds(today)
        tier = self._tiers.get_tier(account_id)
        return self._db.get_or_create(account_id, start.isoformat(), end.isoformat(), tier)

    def _limits(self, account_id: int) -> TierLimits:
        return self._tiers.get_limits(self._tiers.get_tier(account_id))

    # ------------------------------------------------------------------
    # Recordings
    # ------------------------------------------------------------------

    def can_record(self, account_id: int, today: date | None = None) -> bool:
        """True if the account may start another recording this period.

        Uses the tier the account is on *now*, so an upgrade applies to the
        very next check even though the period record keeps its original tier.
        """
        record = self.current_record(account_id, today)
        limit = self._limits(account_id).recording_count
        if limit == UNLIMITED:
            return True
        return record.recording_count < limit

    def record_usage(
        self, account_id: int, duration_delta: int = 0, today: date | None = None,
    ) -> bool:
        """Count one recording (plus `duration_delta` minutes) if the limit allows.

        Check and increment happen in one conditional UPDATE. Returns False
        when the quota is exhausted.
        """
        record = self.current_record(account_id, today)
        limit = self._limits(account_id).recording_count
        counted = self._db.try_increment_recording(
            account_id, record.period_start, limit, duration_delta,
        )
        if counted:
            logger.info(
                "Recording counted for account %d (period %s, limit %s)",
                account_id, record.period_start, "unlimited" if limit == UNLIMITED else limit,
            )
        else:
            logger.info("Recording quota exhausted for account %d (limit %d)", account_id, limit)
        return counted

    def recording_limit(self, account_id: int) -> int:
        return self._limits(account_id).recording_count

    def add_duration(
        self,
        account_id: int,
        minutes: int,
        period_start: str | None = None,
        today: date | None = None,
    ) -> bool:
        """Add billed minutes to the period a recording was counted in.

        A missing record means no recording was in flight for that period;
        that is logged and otherwise ignored.
        """
        if period_start is None:
            period_start = period_bounds(today or date.today())[0].isoformat()
        added = self._db.add_duration(account_id, period_start, minutes)
        if not added:
            logger.warning(
                "No usage record in flight for account %d (period %s); %d minute(s) not billed",
                account_id, period_start, minutes,
            )
        return added

    def refund_recording(self, account_id: int, period_start: str) -> bool:
        refunded = self._db.refund_recording(account_id, period_start)
        if refunded:
            logger.info("Recording refunded for account %d (period %s)", account_id, period_start)
        return refunded

    def max_recording_seconds(self, account_id: int) -> int:
        """Per-recording length limit in seconds, or UNLIMITED."""
        minutes = self._limits(account_id).recording_duration_minutes
        if minutes == UNLIMITED:
            return UNLIMITED
        return minutes * 60

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def can_comment(self, account_id: int, today: date | None = None) -> bool:
        record = self.current_record(account_id, today)
        limit = self._limits(account_id).comment_count
        return limit == UNLIMITED or record.comment_count < limit

    def record_comment(self, account_id: int, today: date | None = None) -> bool:
        record = self.current_record(account_id, today)
        limit = self._limits(account_id).comment_count
        return self._db.try_increment_comment(account_id, record.period_start, limit)

    def comment_limit(self, account_id: int) -> int:
        return self._limits(account_id).comment_count

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def retention_countdown(
        self,
        account_id: int,
        created_on: date | str,
        today: date | None = None,
    ) -> int | None:
        """Days left before a recording created on `created_on` may be deleted.

        None means the tier stores recordings permanently.
        """
        retention_days = self._limits(account_id).retention_days
        if retention_days == UNLIMITED:
            return None
        if isinstance(created_on, str):
            created_on = datetime.fromisoformat(created_on).date()
        today = today or date.today()
        return max(0, retention_days - (today - created_on).days)

    def purge_expired(self, account_id: int, today: date | None = None) -> int:
        """Delete sessions whose retention window has run out. Returns how many."""
        if self._session_db is None:
            raise RuntimeError("purge_expired needs a SessionDB")
        retention_days = self._limits(account_id).retention_days
        if retention_days == UNLIMITED:
            return 0
        today = today or date.today()
        cutoff = (today - timedelta(days=retention_days)).isoformat()
        return self._session_db.purge_created_before(account_id, cutoff)

    def purge_all_expired(self, today: date | None = None) -> int:
        """Run `purge_expired` for every account that has sessions."""
        if self._session_db is None:
            raise RuntimeError("purge_all_expired needs a SessionDB")
        purged = 0
        for account_id in self._session_db.list_account_ids():
            try:
                purged += self.purge_expired(account_id, today)
            except (ValueError, sqlite3.Error) as exc:
                logger.error("Retention purge skipped account %d: %s", account_id, exc)
        logger.info("Retention purge removed %d session(s)", purged)
        return purged
