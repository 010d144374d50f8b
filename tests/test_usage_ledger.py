"""Tests for src.core.usage_ledger — quota gate, billing periods, retention."""

from concurrent.futures import ThreadPoolExecutor
from datetime import date

import pytest

from src.core.usage_ledger import (
    LimitStatus,
    UsageLedger,
    period_bounds,
    recording_limit_status,
)
from src.data.models import UNLIMITED, SessionSetup, SessionStatus

ACCOUNT = 12345
MARCH = date(2026, 3, 15)


class TestPeriodBounds:
    def test_mid_month(self):
        assert period_bounds(date(2026, 3, 15)) == (date(2026, 3, 1), date(2026, 3, 31))

    def test_february_leap_year(self):
        assert period_bounds(date(2028, 2, 10)) == (date(2028, 2, 1), date(2028, 2, 29))

    def test_first_and_last_day_share_a_period(self):
        assert period_bounds(date(2026, 4, 1)) == period_bounds(date(2026, 4, 30))


class TestRecordingLimitStatus:
    def test_ok_below_eighty_percent(self):
        assert recording_limit_status(200, 300) is LimitStatus.OK

    def test_near_above_eighty_percent(self):
        assert recording_limit_status(241, 300) is LimitStatus.NEAR

    def test_over_at_limit(self):
        assert recording_limit_status(300, 300) is LimitStatus.OVER

    def test_unlimited(self):
        assert recording_limit_status(10_000, UNLIMITED) is LimitStatus.OK


class TestQuota:
    def test_new_period_starts_at_zero(self, ledger):
        record = ledger.current_record(ACCOUNT, today=MARCH)
        assert record.recording_count == 0
        assert record.period_start == "2026-03-01"
        assert record.period_end == "2026-03-31"
        assert record.tier == "free"

    def test_free_tier_allows_five(self, ledger):
        results = [ledger.record_usage(ACCOUNT, today=MARCH) for _ in range(6)]
        assert results == [True] * 5 + [False]
        assert ledger.can_record(ACCOUNT, today=MARCH) is False

    def test_new_month_resets(self, ledger):
        for _ in range(5):
            ledger.record_usage(ACCOUNT, today=MARCH)
        assert ledger.can_record(ACCOUNT, today=date(2026, 4, 1)) is True

    def test_concurrent_starts_never_exceed_limit(self, ledger):
        ledger.current_record(ACCOUNT, today=MARCH)
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: ledger.record_usage(ACCOUNT, today=MARCH), range(12)))
        assert results.count(True) == 5
        assert ledger.current_record(ACCOUNT, today=MARCH).recording_count == 5

    def test_upgrade_applies_immediately(self, ledger, tiers):
        for _ in range(5):
            ledger.record_usage(ACCOUNT, today=MARCH)
        assert ledger.can_record(ACCOUNT, today=MARCH) is False

        tiers.set_tier(ACCOUNT, "premium")
        assert ledger.can_record(ACCOUNT, today=MARCH) is True
        assert ledger.record_usage(ACCOUNT, today=MARCH) is True
        # The period record keeps the tier it was opened with
        assert ledger.current_record(ACCOUNT, today=MARCH).tier == "free"

    def test_family_is_unlimited(self, ledger, tiers):
        tiers.set_tier(ACCOUNT, "family")
        assert all(ledger.record_usage(ACCOUNT, today=MARCH) for _ in range(50))
        assert ledger.max_recording_seconds(ACCOUNT) == UNLIMITED


class TestDuration:
    def test_add_duration_to_open_period(self, ledger):
        ledger.record_usage(ACCOUNT, today=MARCH)
        assert ledger.add_duration(ACCOUNT, 4, today=MARCH) is True
        assert ledger.current_record(ACCOUNT, today=MARCH).recording_duration_minutes == 4

    def test_missing_record_is_logged_not_raised(self, ledger, caplog):
        assert ledger.add_duration(ACCOUNT, 4, period_start="2025-01-01") is False
        assert "not billed" in caplog.text

    def test_free_recording_limit_in_seconds(self, ledger):
        assert ledger.max_recording_seconds(ACCOUNT) == 300


class TestComments:
    def test_free_tier_comment_limit(self, ledger):
        results = [ledger.record_comment(ACCOUNT, today=MARCH) for _ in range(11)]
        assert results.count(True) == 10
        assert ledger.can_comment(ACCOUNT, today=MARCH) is False


class TestRetention:
    def test_countdown_free_tier(self, ledger):
        assert ledger.retention_countdown(ACCOUNT, date(2026, 3, 1), today=date(2026, 3, 11)) == 20

    def test_countdown_never_negative(self, ledger):
        assert ledger.retention_countdown(ACCOUNT, "2026-01-01T10:00:00", today=MARCH) == 0

    def test_permanent_storage(self, ledger, tiers):
        tiers.set_tier(ACCOUNT, "family")
        assert ledger.retention_countdown(ACCOUNT, date(2020, 1, 1)) is None

    def test_purge_expired(self, ledger, session_db):
        session_db.create(ACCOUNT, SessionSetup(title="old"), SessionStatus.COMPLETE, started_at="2026-01-10T09:00:00")
        session_db.create(ACCOUNT, SessionSetup(title="recent"), SessionStatus.COMPLETE, started_at="2026-03-10T09:00:00")
        assert ledger.purge_expired(ACCOUNT, today=MARCH) == 1
        assert [s.setup.title for s in session_db.list_for_account(ACCOUNT)] == ["recent"]

    def test_purge_all_expired_respects_each_tier(self, ledger, session_db, tiers):
        tiers.set_tier(7, "family")
        for account in (ACCOUNT, 7):
            session_db.create(account, SessionSetup(title="old"), SessionStatus.COMPLETE, started_at="2026-01-10T09:00:00")

        assert ledger.purge_all_expired(today=MARCH) == 1
        assert session_db.list_for_account(ACCOUNT) == []
        assert [s.setup.title for s in session_db.list_for_account(7)] == ["old"]

    def test_purge_needs_session_db(self, usage_db, tiers):
        with pytest.raises(RuntimeError):
            UsageLedger(usage_db, tiers).purge_expired(ACCOUNT)
