"""
PACT Bridge — Confirmation Workflow.

Per-action state machine driven by the user's review:

    pending --confirm--> confirmed --schedule--> scheduled --complete--> completed
    pending --reject---> rejected

Every transition is a guarded update on (status, version) and appends an
audit row; rows in the audit table are never updated or deleted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING

from src.core.errors import InvalidTransition
from src.data.models import ActionStatus, ActionType, CompletionEvent

if TYPE_CHECKING:
    from src.core.action_scheduler import ActionScheduler
    from src.data.db import ActionDB, ScheduleDB
    from src.data.models import CalendarEvent, DailyAction, ExtractedAction
    from src.ports.completion_port import CompletionPort

logger = logging.getLogger(__name__)

TRANSITIONS: dict[ActionStatus, dict[str, ActionStatus]] = {
    ActionStatus.PENDING: {
        "confirm": ActionStatus.CONFIRMED,
        "reject": ActionStatus.REJECTED,
    },
    ActionStatus.CONFIRMED: {"schedule": ActionStatus.SCHEDULED},
    ActionStatus.SCHEDULED: {"complete": ActionStatus.COMPLETED},
    ActionStatus.REJECTED: {},
    ActionStatus.COMPLETED: {},
}

EDITABLE_FIELDS = ("text", "priority_level", "due_context", "action_type")


@dataclass
class ReviewPage:
    """Pending actions split into what to show first and what sits behind "show more"."""

    visible: list[ExtractedAction] = field(default_factory=list)
    hidden: list[ExtractedAction] = field(default_factory=list)

    @property
    def has_more(self) -> bool:
        return bool(self.hidden)

    @property
    def total(self) -> int:
        return len(self.visible) + len(self.hidden)


def next_status(current: ActionStatus, operation: str) -> ActionStatus:
    """Look up the transition table.

    Raises:
        InvalidTransition: `operation` is not allowed from `current`.
    """
    target = TRANSITIONS[current].get(operation)
    if target is None:
        raise InvalidTransition("action", current.value, operation)
    return target


def _clean_modifications(modifications: dict) -> dict:
    """Validate user edits and coerce them to stored types."""
    unknown = set(modifications) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"Fields not editable: {sorted(unknown)}")

    cleaned = dict(modifications)
    if "text" in cleaned:
        cleaned["text"] = str(cleaned["text"]).strip()
        if not cleaned["text"]:
            raise ValueError("Action text cannot be blank")
    if "priority_level" in cleaned:
        cleaned["priority_level"] = max(1, min(10, int(cleaned["priority_level"])))
    if "action_type" in cleaned:
        cleaned["action_type"] = ActionType(cleaned["action_type"]).value
    if "due_context" in cleaned:
        cleaned["due_context"] = str(cleaned["due_context"] or "")
    return cleaned


class ConfirmationWorkflow:
    """Drives extracted actions through review, scheduling and completion."""

    def __init__(
        self,
        action_db: ActionDB,
        scheduler: ActionScheduler,
        schedule_db: ScheduleDB,
        completions: CompletionPort | None = None,
        page_size: int | None = None,
    ) -> None:
        if page_size is None:
            from src.config import settings
            page_size = settings.REVIEW_PAGE_SIZE

        self._actions = action_db
        self._scheduler = scheduler
        self._schedule = schedule_db
        self._completions = completions
        self._page_size = page_size

    def _get(self, action_id: int, account_id: int | None = None) -> ExtractedAction:
        """Fetch an action; another account's action is reported as not found."""
        action = self._actions.get(action_id)
        if action is None or (account_id is not None and action.account_id != account_id):
            if action is not None:
                logger.warning("Account %d tried to reach action #%d of another account", account_id, action_id)
            raise ValueError(f"Action {action_id} not found")
        return action

    def _check(self, action: ExtractedAction, operation: str) -> ActionStatus:
        try:
            return next_status(action.status, operation)
        except InvalidTransition:
            logger.error(
                "Action #%d: '%s' not allowed from '%s'",
                action.id, operation, action.status.value,
            )
            raise

    def _lost_race(self, action_id: int, operation: str) -> InvalidTransition:
        current = self._actions.get(action_id)
        status = current.status.value if current else "deleted"
        logger.error("Action #%d changed before '%s' applied (now '%s')", action_id, operation, status)
        return InvalidTransition("action", status, operation)

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def confirm(
        self,
        action_id: int,
        modifications: dict | None = None,
        note: str | None = None,
        account_id: int | None = None,
    ) -> ExtractedAction:
        """Accept a pending action, optionally editing it first.

        When `account_id` is given, actions owned by other accounts raise
        ValueError as if they did not exist; the same holds for every
        operation below.
        """
        action = self._get(action_id, account_id)
        target = self._check(action, "confirm")
        cleaned = _clean_modifications(modifications) if modifications else {}
        audit_status = "modified" if cleaned else ActionStatus.CONFIRMED.value

        if not self._actions.transition(
            action, target, audit_status, fields=cleaned, modifications=cleaned, note=note,
        ):
            raise self._lost_race(action_id, "confirm")
        logger.info("Action #%d %s", action_id, audit_status)
        return self._get(action_id)

    def reject(
        self, action_id: int, reason: str | None = None, account_id: int | None = None,
    ) -> ExtractedAction:
        action = self._get(action_id, account_id)
        target = self._check(action, "reject")
        if not self._actions.transition(action, target, ActionStatus.REJECTED.value, note=reason):
            raise self._lost_race(action_id, "reject")
        logger.info("Action #%d rejected%s", action_id, f": {reason}" if reason else "")
        return self._get(action_id)

    def review_queue(self, account_id: int, limit: int | None = None) -> ReviewPage:
        """Pending actions, most important first, split at `limit`."""
        limit = self._page_size if limit is None else limit
        pending = self._actions.list_by_status(account_id, ActionStatus.PENDING)
        pending.sort(key=lambda a: (-a.priority_level, -a.confidence_score, a.id))
        return ReviewPage(visible=pending[:limit], hidden=pending[limit:])

    # ------------------------------------------------------------------
    # Scheduling and completion
    # ------------------------------------------------------------------

    def schedule(
        self,
        action_id: int,
        target_date: str | None = None,
        target_time: str | None = None,
        account_id: int | None = None,
    ) -> tuple[CalendarEvent, DailyAction]:
        """Put a confirmed action on the calendar (reminders included).

        Raises:
            InvalidTransition: the action is not `confirmed`.
            SchedulingPartialFailure: nothing was written; the action is
                still `confirmed`.
        """
        action = self._get(action_id, account_id)
        self._check(action, "schedule")
        return self._scheduler.schedule_action(action, target_date, target_time)

    def complete(
        self,
        action_id: int,
        completed_date: str | None = None,
        account_id: int | None = None,
    ) -> ExtractedAction:
        """Mark a scheduled action done and emit its completion event."""
        action = self._get(action_id, account_id)
        self._check(action, "complete")
        completed_date = completed_date or date.today().isoformat()

        if not self._schedule.complete_action(action, completed_date):
            raise self._lost_race(action_id, "complete")
        logger.info("Action #%d completed on %s", action_id, completed_date)

        if self._completions is not None:
            self._completions.publish(
                CompletionEvent(
                    action_id=action.id,
                    account_id=action.account_id,
                    completed_date=completed_date,
                )
            )
        return self._get(action_id)
