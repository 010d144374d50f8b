"""
PACT Bridge — Reminder Dispatch.

Runs on every job-queue tick: finds active reminders that are due, delivers
them through the channels they name and stamps `sent_at`. A failed delivery
leaves the reminder unsent so the next tick retries it.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.core.reminders import ReminderService
    from src.data.db import ReminderDB, ScheduleDB
    from src.data.models import CalendarEvent, Reminder
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


def format_reminder(event: CalendarEvent, reminder: Reminder) -> str:
    lines = [f"⏰ *Reminder:* {event.title}", f"📅 {event.date} at {event.time}"]
    if reminder.snooze_reason:
        lines.append(f"💤 Snoozed: {reminder.snooze_reason}")
    lines.append(f"Snooze: /snooze {reminder.id} 10")
    return "\n".join(lines)


async def send_due_reminders(
    reminder_db: ReminderDB,
    schedule_db: ScheduleDB,
    reminders: ReminderService,
    channels: dict[str, NotificationPort],
    now: datetime | None = None,
) -> int:
    """Deliver every due reminder. Returns how many were marked sent.

    `channels` maps a delivery method ("push", "in_app", "email") to a
    notifier; methods without a notifier are skipped. One notifier serving
    several methods sends a single message.
    """
    now = now or datetime.now()
    sent = 0

    for reminder in reminder_db.list_pending():
        event = schedule_db.get_event(reminder.event_id)
        if event is None:
            logger.warning("Reminder #%d points at missing event #%d", reminder.id, reminder.event_id)
            continue
        if not reminders.is_due(reminder, event, now):
            continue

        notifiers: list[NotificationPort] = []
        for method in reminder.methods:
            notifier = channels.get(method)
            if notifier is None:
                logger.debug("No channel configured for '%s', skipping", method)
            elif all(notifier is not n for n in notifiers):
                notifiers.append(notifier)

        text = format_reminder(event, reminder)
        try:
            for notifier in notifiers:
                await notifier.send_message(reminder.account_id, text)
        except Exception as exc:
            logger.error("Delivery of reminder #%d failed, will retry: %s", reminder.id, exc)
            continue

        if reminder_db.mark_sent(reminder.id, now.isoformat(timespec="seconds")):
            sent += 1
            logger.info(
                "Reminder #%d sent for event #%d via %s",
                reminder.id, event.id, ", ".join(reminder.methods),
            )

    return sent
