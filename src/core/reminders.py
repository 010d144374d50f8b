"""
PACT Bridge — Reminder Generator.

Every scheduled event gets the same default reminder set; users may add
more afterwards. A reminder that has fired (`sent_at` set) is frozen:
snoozing creates a fresh reminder instead of reviving the old one, and
dismissing only applies to reminders that never fired.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from src.core.errors import InvalidTransition
from src.data.models import Reminder, ReminderTime

if TYPE_CHECKING:
    from src.data.db import ReminderDB
    from src.data.models import CalendarEvent

logger = logging.getLogger(__name__)

DELIVERY_METHODS = ("in_app", "push", "email")

DEFAULT_REMINDERS: tuple[tuple[ReminderTime, tuple[str, ...]], ...] = (
    (ReminderTime.FIFTEEN_MINUTES_BEFORE, ("in_app", "push")),
    (ReminderTime.MORNING_OF, ("email", "in_app")),
)

_MINUTES_BEFORE = {
    ReminderTime.FIVE_MINUTES_BEFORE: 5,
    ReminderTime.FIFTEEN_MINUTES_BEFORE: 15,
    ReminderTime.THIRTY_MINUTES_BEFORE: 30,
    ReminderTime.ONE_HOUR_BEFORE: 60,
}

# "1 day before" fires once, somewhere in the hour that starts 24h out
_DAY_BEFORE_WINDOW = (23 * 60, 24 * 60)


def _event_start(event: CalendarEvent) -> datetime:
    return datetime.fromisoformat(f"{event.date}T{event.time}")


class ReminderService:
    def __init__(self, reminder_db: ReminderDB, morning_hour: int | None = None) -> None:
        if morning_hour is None:
            from src.config import settings
            morning_hour = settings.MORNING_REMINDER_HOUR

        self._db = reminder_db
        self._morning_hour = morning_hour

    def _get(self, reminder_id: int, account_id: int | None = None) -> Reminder:
        reminder = self._db.get(reminder_id)
        if reminder is None or (account_id is not None and reminder.account_id != account_id):
            raise ValueError(f"Reminder {reminder_id} not found")
        return reminder

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def attach_defaults(self, event: CalendarEvent) -> list[Reminder]:
        """Attach the default reminder kinds the event does not have yet.

        Safe to call again: kinds already present (fired, snoozed or
        dismissed included) are skipped. A storage failure leaves the gap in
        place; it is logged, an empty list is returned, and
        `backfill_defaults` closes it later.
        """
        try:
            present = {r.reminder_time for r in self._db.list_for_event(event.id)}
            reminders = [
                Reminder(
                    id=0,
                    event_id=event.id,
                    account_id=event.account_id,
                    reminder_time=reminder_time,
                    methods=list(methods),
                )
                for reminder_time, methods in DEFAULT_REMINDERS
                if reminder_time not in present
            ]
            created = self._db.add_many(reminders) if reminders else []
        except sqlite3.Error as exc:
            logger.error("Default reminders for event #%d not created (retryable): %s", event.id, exc)
            return []
        if created:
            logger.info("Attached %d default reminder(s) to event #%d", len(created), event.id)
        return created

    def backfill_defaults(self, events: list[CalendarEvent]) -> int:
        """Re-attach missing default reminders to `events`. Returns how many were created."""
        created = 0
        for event in events:
            created += len(self.attach_defaults(event))
        if created:
            logger.info("Backfilled %d missing default reminder(s)", created)
        return created

    def add_reminder(
        self, event: CalendarEvent, reminder_time: ReminderTime, methods: list[str],
    ) -> Reminder:
        unknown = set(methods) - set(DELIVERY_METHODS)
        if not methods or unknown:
            raise ValueError(f"Invalid reminder methods: {methods!r}")
        reminder = Reminder(
            id=0,
            event_id=event.id,
            account_id=event.account_id,
            reminder_time=reminder_time,
            methods=list(dict.fromkeys(methods)),
        )
        return self._db.add_many([reminder])[0]

    # ------------------------------------------------------------------
    # User responses
    # ------------------------------------------------------------------

    def snooze(
        self,
        reminder_id: int,
        minutes: int,
        reason: str | None = None,
        now: datetime | None = None,
        account_id: int | None = None,
    ) -> Reminder:
        """Close the reminder and schedule a new one `minutes` from now."""
        if minutes <= 0:
            raise ValueError("Snooze minutes must be positive")
        original = self._get(reminder_id, account_id)
        if not original.is_active and original.sent_at is None:
            raise InvalidTransition("reminder", "dismissed", "snooze")

        now = now or datetime.now()
        replacement = Reminder(
            id=0,
            event_id=original.event_id,
            account_id=original.account_id,
            reminder_time=original.reminder_time,
            methods=list(original.methods),
            remind_at=(now + timedelta(minutes=minutes)).isoformat(timespec="seconds"),
            snoozed_from=original.id,
            snooze_reason=reason,
        )
        created = self._db.snooze(original, replacement, now.isoformat(timespec="seconds"))
        logger.info(
            "Reminder #%d snoozed %d min -> reminder #%d", reminder_id, minutes, created.id,
        )
        return created

    def dismiss(self, reminder_id: int, account_id: int | None = None) -> None:
        """Deactivate a reminder that was never needed. `sent_at` stays empty."""
        reminder = self._get(reminder_id, account_id)
        if reminder.sent_at is not None:
            raise InvalidTransition("reminder", "sent", "dismiss")
        if not self._db.dismiss(reminder_id):
            raise InvalidTransition("reminder", "sent", "dismiss")
        logger.info("Reminder #%d dismissed", reminder_id)

    # ------------------------------------------------------------------
    # Timing
    # ------------------------------------------------------------------

    def is_due(self, reminder: Reminder, event: CalendarEvent, now: datetime) -> bool:
        """Whether `reminder` should fire at `now`."""
        if not reminder.is_active or reminder.sent_at is not None:
            return False
        if reminder.remind_at:
            return now >= datetime.fromisoformat(reminder.remind_at)

        start = _event_start(event)
        minutes_until = (start - now).total_seconds() / 60

        if reminder.reminder_time in _MINUTES_BEFORE:
            return 0 < minutes_until <= _MINUTES_BEFORE[reminder.reminder_time]
        if reminder.reminder_time is ReminderTime.ONE_DAY_BEFORE:
            low, high = _DAY_BEFORE_WINDOW
            return low < minutes_until <= high
        if reminder.reminder_time is ReminderTime.MORNING_OF:
            return (
                now.date() == start.date()
                and self._morning_hour <= now.hour < self._morning_hour + 1
            )
        return False
