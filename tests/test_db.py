"""Tests for src.data.db — SQLite repositories and their guarded updates."""

import sqlite3

import pytest

from src.data.db import ConcurrentUpdateError
from src.data.models import (
    ActionStatus,
    CalendarEvent,
    DailyAction,
    FocusArea,
    Participant,
    Reminder,
    ReminderTime,
    SessionSetup,
    SessionStatus,
)

ACCOUNT = 12345


def _event(action, date="2026-03-10", time="09:00"):
    return CalendarEvent(
        id=0, account_id=action.account_id, action_id=action.id, title=action.text,
        description="", date=date, time=time, category=action.action_type.value,
    )


def _daily(action, date="2026-03-10", time="09:00"):
    return DailyAction(
        id=0, account_id=action.account_id, action_id=action.id, calendar_event_id=0,
        title=action.text, date=date, start_time=time, duration_minutes=15,
        focus_area=FocusArea.PERSONAL, difficulty_level=3,
    )


class TestUsageDB:
    def test_get_or_create_starts_at_zero(self, usage_db):
        record = usage_db.get_or_create(ACCOUNT, "2026-03-01", "2026-03-31", "free")
        assert record.recording_count == 0
        assert record.recording_duration_minutes == 0
        assert record.comment_count == 0
        assert record.tier == "free"

    def test_get_or_create_keeps_original_tier(self, usage_db):
        usage_db.get_or_create(ACCOUNT, "2026-03-01", "2026-03-31", "free")
        again = usage_db.get_or_create(ACCOUNT, "2026-03-01", "2026-03-31", "premium")
        assert again.tier == "free"
        assert len(usage_db.list_for_account(ACCOUNT)) == 1

    def test_increment_stops_at_limit(self, usage_db):
        usage_db.get_or_create(ACCOUNT, "2026-03-01", "2026-03-31", "free")
        assert usage_db.try_increment_recording(ACCOUNT, "2026-03-01", 2)
        assert usage_db.try_increment_recording(ACCOUNT, "2026-03-01", 2)
        assert not usage_db.try_increment_recording(ACCOUNT, "2026-03-01", 2)
        assert usage_db.get(ACCOUNT, "2026-03-01").recording_count == 2

    def test_unlimited_never_blocks(self, usage_db):
        usage_db.get_or_create(ACCOUNT, "2026-03-01", "2026-03-31", "family")
        for _ in range(20):
            assert usage_db.try_increment_recording(ACCOUNT, "2026-03-01", -1)

    def test_add_duration_without_record(self, usage_db):
        assert usage_db.add_duration(ACCOUNT, "2026-03-01", 5) is False

    def test_refund_never_goes_negative(self, usage_db):
        usage_db.get_or_create(ACCOUNT, "2026-03-01", "2026-03-31", "free")
        assert usage_db.refund_recording(ACCOUNT, "2026-03-01") is False
        assert usage_db.get(ACCOUNT, "2026-03-01").recording_count == 0


class TestSessionDB:
    def test_create_and_get_round_trips_setup(self, session_db):
        setup = SessionSetup(
            title="Dinner with mom",
            participants=[Participant(name="Mom", relationship="mother")],
            context="Sunday dinner",
        )
        session = session_db.create(ACCOUNT, setup, SessionStatus.RECORDING, started_at="2026-03-10T10:00:00")
        loaded = session_db.get(session.id)
        assert loaded.setup.title == "Dinner with mom"
        assert loaded.setup.participants[0].relationship == "mother"
        assert loaded.status is SessionStatus.RECORDING

    def test_transition_is_guarded(self, session_db):
        session = session_db.create(ACCOUNT, SessionSetup(title="t"), SessionStatus.STOPPED)
        assert session_db.transition(session.id, (SessionStatus.STOPPED,), SessionStatus.PROCESSING)
        assert not session_db.transition(session.id, (SessionStatus.STOPPED,), SessionStatus.PROCESSING)

    def test_transition_rejects_unknown_fields(self, session_db):
        session = session_db.create(ACCOUNT, SessionSetup(title="t"), SessionStatus.STOPPED)
        with pytest.raises(ValueError):
            session_db.transition(session.id, (SessionStatus.STOPPED,), SessionStatus.FAILED, account_id=1)

    def test_purge_removes_actions_and_audit(self, session_db, action_db):
        old = session_db.create(ACCOUNT, SessionSetup(title="old"), SessionStatus.COMPLETE, started_at="2026-01-01T09:00:00")
        new = session_db.create(ACCOUNT, SessionSetup(title="new"), SessionStatus.COMPLETE, started_at="2026-03-01T09:00:00")
        action = action_db.add_many(old.id, ACCOUNT, [{"action_type": "task", "text": "Old thing", "priority_level": 3, "confidence_score": 0.9}])[0]
        action_db.transition(action, ActionStatus.CONFIRMED, "confirmed")

        assert session_db.purge_created_before(ACCOUNT, "2026-02-01") == 1
        assert session_db.get(old.id) is None
        assert session_db.get(new.id) is not None
        assert action_db.get(action.id) is None
        assert action_db.list_confirmations(action.id) == []

    def test_purge_removes_comments(self, session_db, action_db, comment_db):
        old = session_db.create(ACCOUNT, SessionSetup(title="old"), SessionStatus.COMPLETE, started_at="2026-01-01T09:00:00")
        action = action_db.add_many(old.id, ACCOUNT, [{"action_type": "task", "text": "Old thing", "priority_level": 3, "confidence_score": 0.9}])[0]
        comment_db.add(action.id, ACCOUNT, "waiting on her")

        session_db.purge_created_before(ACCOUNT, "2026-02-01")

        assert comment_db.list_for_action(action.id) == []

    def test_list_account_ids(self, session_db):
        for account in (7, ACCOUNT, 7):
            session_db.create(account, SessionSetup(title="call"), SessionStatus.COMPLETE)
        assert session_db.list_account_ids() == [7, ACCOUNT]


class TestActionDB:
    def test_add_many_creates_pending(self, make_actions):
        actions = make_actions({"text": "Call mom"}, {"text": "Book dentist"})
        assert [a.status for a in actions] == [ActionStatus.PENDING, ActionStatus.PENDING]
        assert all(a.version == 0 for a in actions)

    def test_transition_bumps_version_and_audits(self, make_actions, action_db):
        action = make_actions({"text": "Call mom"})[0]
        assert action_db.transition(action, ActionStatus.CONFIRMED, "confirmed", note="ok")
        loaded = action_db.get(action.id)
        assert loaded.status is ActionStatus.CONFIRMED
        assert loaded.version == 1
        notes = action_db.list_confirmations(action.id)
        assert [n.confirmation_status for n in notes] == ["confirmed"]
        assert notes[0].note == "ok"

    def test_stale_version_loses(self, make_actions, action_db):
        action = make_actions({"text": "Call mom"})[0]
        assert action_db.transition(action, ActionStatus.CONFIRMED, "confirmed")
        # Same snapshot again: status and version no longer match
        assert not action_db.transition(action, ActionStatus.REJECTED, "rejected")
        assert len(action_db.list_confirmations(action.id)) == 1


class TestScheduleDB:
    def _confirmed(self, make_actions, action_db, text="Call mom"):
        action = make_actions({"text": text})[0]
        action_db.transition(action, ActionStatus.CONFIRMED, "confirmed")
        return action_db.get(action.id)

    def test_create_scheduled_pair(self, make_actions, action_db, schedule_db):
        action = self._confirmed(make_actions, action_db)
        event, daily = schedule_db.create_scheduled_pair(action, _event(action), _daily(action))
        assert daily.calendar_event_id == event.id
        loaded = action_db.get(action.id)
        assert loaded.status is ActionStatus.SCHEDULED
        assert (loaded.scheduled_date, loaded.scheduled_time) == ("2026-03-10", "09:00")

    def test_second_write_failure_rolls_back_everything(self, make_actions, action_db, schedule_db, monkeypatch):
        action = self._confirmed(make_actions, action_db)

        def _boom(self, conn, daily):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(type(schedule_db), "_insert_daily_action", _boom)
        with pytest.raises(sqlite3.OperationalError):
            schedule_db.create_scheduled_pair(action, _event(action), _daily(action))

        assert schedule_db.get_event_for_action(action.id) is None
        assert schedule_db.get_daily_action_for(action.id) is None
        assert action_db.get(action.id).status is ActionStatus.CONFIRMED

    def test_stale_action_raises_and_rolls_back(self, make_actions, action_db, schedule_db):
        action = self._confirmed(make_actions, action_db)
        schedule_db.create_scheduled_pair(action, _event(action), _daily(action))
        with pytest.raises(ConcurrentUpdateError):
            schedule_db.create_scheduled_pair(action, _event(action), _daily(action))

    def test_list_events_by_date_range(self, make_actions, action_db, schedule_db):
        a = self._confirmed(make_actions, action_db, "Call mom")
        b = self._confirmed(make_actions, action_db, "Email boss")
        schedule_db.create_scheduled_pair(a, _event(a, "2026-03-10"), _daily(a, "2026-03-10"))
        schedule_db.create_scheduled_pair(b, _event(b, "2026-03-20"), _daily(b, "2026-03-20"))
        events = schedule_db.list_events(ACCOUNT, "2026-03-01", "2026-03-15")
        assert [e.title for e in events] == ["Call mom"]

    def test_list_upcoming_events_spans_accounts(self, make_actions, action_db, schedule_db):
        a = self._confirmed(make_actions, action_db, "Call mom")
        b = make_actions({"text": "Water plants"}, account_id=7)[0]
        action_db.transition(b, ActionStatus.CONFIRMED, "confirmed")
        b = action_db.get(b.id)
        schedule_db.create_scheduled_pair(a, _event(a, "2026-03-01"), _daily(a, "2026-03-01"))
        schedule_db.create_scheduled_pair(b, _event(b, "2026-03-12"), _daily(b, "2026-03-12"))

        upcoming = schedule_db.list_upcoming_events("2026-03-10")

        assert [(e.account_id, e.title) for e in upcoming] == [(7, "Water plants")]


class TestReminderDB:
    def _reminder(self, **kwargs):
        defaults = dict(
            id=0, event_id=1, account_id=ACCOUNT,
            reminder_time=ReminderTime.FIFTEEN_MINUTES_BEFORE, methods=["push"],
        )
        defaults.update(kwargs)
        return Reminder(**defaults)

    def test_mark_sent_only_once(self, reminder_db):
        reminder = reminder_db.add_many([self._reminder()])[0]
        assert reminder_db.mark_sent(reminder.id, "2026-03-10T08:45:00")
        assert not reminder_db.mark_sent(reminder.id, "2026-03-10T08:46:00")
        assert reminder_db.get(reminder.id).sent_at == "2026-03-10T08:45:00"

    def test_pending_excludes_sent_and_dismissed(self, reminder_db):
        a, b, c = reminder_db.add_many([self._reminder(), self._reminder(), self._reminder()])
        reminder_db.mark_sent(a.id, "2026-03-10T08:45:00")
        reminder_db.dismiss(b.id)
        assert [r.id for r in reminder_db.list_pending()] == [c.id]

    def test_snooze_leaves_fired_original_untouched(self, reminder_db):
        original = reminder_db.add_many([self._reminder()])[0]
        reminder_db.mark_sent(original.id, "2026-03-10T08:45:00")
        replacement = self._reminder(remind_at="2026-03-10T09:00:00", snoozed_from=original.id)
        reminder_db.snooze(reminder_db.get(original.id), replacement, "2026-03-10T08:50:00")
        frozen = reminder_db.get(original.id)
        assert frozen.sent_at == "2026-03-10T08:45:00"
        assert frozen.is_active is True
        assert reminder_db.get(replacement.id).snoozed_from == original.id


class TestCommentDB:
    def test_comments_listed_in_order(self, comment_db):
        comment_db.add(1, ACCOUNT, "first")
        comment_db.add(1, ACCOUNT, "second")
        comment_db.add(2, ACCOUNT, "elsewhere")
        assert [c.body for c in comment_db.list_for_action(1)] == ["first", "second"]


class TestTierDB:
    def test_set_then_get(self, tmp_db_path):
        from src.data.db import TierDB

        tiers = TierDB(tmp_db_path)
        assert tiers.get(ACCOUNT) is None
        tiers.set(ACCOUNT, "premium")
        tiers.set(ACCOUNT, "family")
        assert tiers.get(ACCOUNT) == "family"
