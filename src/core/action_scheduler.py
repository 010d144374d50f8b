"""
PACT Bridge — Action Scheduler.

Turns a confirmed action into a calendar event plus its paired daily
action. Duration and focus area come from ordered keyword tables checked
first-match-wins against the lowercased action text, so the policy reads
as data rather than as nested conditionals.

No I/O in the heuristics: only `ActionScheduler` touches storage.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import date, datetime
from typing import TYPE_CHECKING, Callable

from src.core.errors import InvalidTransition, PactBridgeError, SchedulingPartialFailure
from src.data.db import ConcurrentUpdateError
from src.data.models import (
    ActionStatus,
    CalendarEvent,
    DailyAction,
    ExtractedAction,
    FocusArea,
)

if TYPE_CHECKING:
    from src.core.reminders import ReminderService
    from src.data.db import ActionDB, ScheduleDB

logger = logging.getLogger(__name__)

URGENT_PRIORITY = 4
URGENT_DEFAULT_TIME = "09:00"
REGULAR_DEFAULT_TIME = "14:00"
MAX_DIFFICULTY = 5

# ---------------------------------------------------------------------------
# Heuristic tables — (predicate, result), first match wins
# ---------------------------------------------------------------------------

_Rule = tuple[Callable[[ExtractedAction], bool], object]


def _text_has(*keywords: str) -> Callable[[ExtractedAction], bool]:
    def predicate(action: ExtractedAction) -> bool:
        text = action.text.lower()
        return any(k in text for k in keywords)
    return predicate


_HEALTH_WORDS = (
    "health", "medical", "doctor", "dentist", "hospital", "clinic",
    "medication", "medicine", "prescription", "pharmacy", "therapy", "therapist",
)
_FAMILY_WORDS = (
    "family", "mom", "dad", "mother", "father", "parent", "sister", "brother",
    "son", "daughter", "kids", "wife", "husband", "grandma", "grandpa",
)
_WORK_WORDS = ("work", "job", "career", "boss", "office", "colleague", "client", "project")
_FITNESS_WORDS = ("exercise", "fitness", "gym", "jog", "yoga", "swim", "workout")


def _family_related(action: ExtractedAction) -> bool:
    return (
        _text_has(*_FAMILY_WORDS)(action)
        or "family" in action.relationship_impact.lower()
    )


DURATION_RULES: list[_Rule] = [
    (_text_has("call", "text", "email"), 15),
    (_text_has("meet", "visit", "discuss"), 45),
    (_text_has("prepare", "plan", "research"), 90),
]

FOCUS_AREA_RULES: list[_Rule] = [
    (_text_has(*_HEALTH_WORDS), FocusArea.HEALTH),
    (_family_related, FocusArea.RELATIONSHIPS),
    (_text_has(*_WORK_WORDS), FocusArea.WORK),
    (_text_has(*_FITNESS_WORDS), FocusArea.FITNESS),
]


def _first_match(rules: list[_Rule], action: ExtractedAction):
    for predicate, result in rules:
        if predicate(action):
            return result
    return None


def estimate_duration(action: ExtractedAction) -> int:
    """Minutes to block for an action."""
    minutes = _first_match(DURATION_RULES, action)
    if minutes is not None:
        return minutes
    return 30 if action.priority_level >= URGENT_PRIORITY else 60


def classify_focus_area(action: ExtractedAction) -> FocusArea:
    return _first_match(FOCUS_AREA_RULES, action) or FocusArea.PERSONAL


def default_time(action: ExtractedAction) -> str:
    return URGENT_DEFAULT_TIME if action.priority_level >= URGENT_PRIORITY else REGULAR_DEFAULT_TIME


def difficulty_for(action: ExtractedAction) -> int:
    return min(action.priority_level, MAX_DIFFICULTY)


def _describe(action: ExtractedAction) -> str:
    parts = [
        ("Why", action.intent_behind),
        ("When", action.due_context),
        ("Who it affects", action.relationship_impact),
        ("What's at stake", action.emotional_stakes),
    ]
    return "\n".join(f"{label}: {value}" for label, value in parts if value)


def _validate_date_time(target_date: str, target_time: str) -> None:
    date.fromisoformat(target_date)
    datetime.strptime(target_time, "%H:%M")


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class ActionScheduler:
    """Creates the event / daily-action pair for confirmed actions."""

    def __init__(
        self,
        action_db: ActionDB,
        schedule_db: ScheduleDB,
        reminders: ReminderService | None = None,
    ) -> None:
        self._actions = action_db
        self._schedule = schedule_db
        self._reminders = reminders

    def build_pair(
        self,
        action: ExtractedAction,
        target_date: str | None = None,
        target_time: str | None = None,
    ) -> tuple[CalendarEvent, DailyAction]:
        """Compute (unsaved) records for an action; ids are filled in on save."""
        target_date = target_date or date.today().isoformat()
        target_time = target_time or default_time(action)
        _validate_date_time(target_date, target_time)

        event = CalendarEvent(
            id=0,
            account_id=action.account_id,
            action_id=action.id,
            title=action.text,
            description=_describe(action),
            date=target_date,
            time=target_time,
            category=action.action_type.value,
        )
        daily = DailyAction(
            id=0,
            account_id=action.account_id,
            action_id=action.id,
            calendar_event_id=0,
            title=action.text,
            date=target_date,
            start_time=target_time,
            duration_minutes=estimate_duration(action),
            focus_area=classify_focus_area(action),
            difficulty_level=difficulty_for(action),
        )
        return event, daily

    def schedule_action(
        self,
        action: ExtractedAction,
        target_date: str | None = None,
        target_time: str | None = None,
    ) -> tuple[CalendarEvent, DailyAction]:
        """Schedule one confirmed action.

        Either the event, the daily action and the `scheduled` status all
        persist, or none of them does and the action stays `confirmed`.

        Raises:
            InvalidTransition: the action is not `confirmed`.
            SchedulingPartialFailure: storage failed; safe to retry.
            ValueError: malformed target date or time.
        """
        if action.status is not ActionStatus.CONFIRMED:
            logger.error("Schedule rejected for action #%d in '%s'", action.id, action.status.value)
            raise InvalidTransition("action", action.status.value, "schedule")

        event, daily = self.build_pair(action, target_date, target_time)
        try:
            event, daily = self._schedule.create_scheduled_pair(action, event, daily)
        except ConcurrentUpdateError:
            current = self._actions.get(action.id)
            status = current.status.value if current else "deleted"
            logger.error("Action #%d changed while scheduling (now '%s')", action.id, status)
            raise InvalidTransition("action", status, "schedule") from None
        except sqlite3.Error as exc:
            logger.error("Scheduling action #%d failed, rolled back: %s", action.id, exc)
            raise SchedulingPartialFailure(action.id, str(exc)) from exc

        if self._reminders is not None:
            self._reminders.attach_defaults(event)
        return event, daily

    def schedule_all_confirmed(self, account_id: int) -> int:
        """Schedule every confirmed action of an account. Returns how many succeeded."""
        confirmed = self._actions.list_by_status(account_id, ActionStatus.CONFIRMED)
        scheduled = 0
        for action in confirmed:
            try:
                self.schedule_action(action)
                scheduled += 1
            except (PactBridgeError, ValueError, sqlite3.Error) as exc:
                logger.error("Bulk scheduling skipped action #%d: %s", action.id, exc)
        logger.info(
            "Bulk scheduling for account %d: %d of %d scheduled",
            account_id, scheduled, len(confirmed),
        )
        return scheduled
