"""
PACT Bridge — Data Models.

Plain records for everything the capture-to-schedule pipeline persists:
usage per billing period, recording sessions, extracted actions and their
audit trail, the calendar event / daily action pair, and reminders.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

UNLIMITED = -1


class SessionStatus(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    STOPPED = "stopped"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"


class ActionStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"


class ActionType(Enum):
    PROMISE = "promise"
    TASK = "task"


class FocusArea(Enum):
    HEALTH = "health"
    RELATIONSHIPS = "relationships"
    WORK = "work"
    FITNESS = "fitness"
    PERSONAL = "personal"


class ReminderTime(Enum):
    FIVE_MINUTES_BEFORE = "5_minutes_before"
    FIFTEEN_MINUTES_BEFORE = "15_minutes_before"
    THIRTY_MINUTES_BEFORE = "30_minutes_before"
    ONE_HOUR_BEFORE = "1_hour_before"
    ONE_DAY_BEFORE = "1_day_before"
    MORNING_OF = "morning_of"


@dataclass
class TierLimits:
    """Limits of one billing tier. UNLIMITED (-1) disables a limit."""

    name: str
    recording_count: int
    recording_duration_minutes: int   # max length of a single recording
    retention_days: int               # -1 = permanent storage
    comment_count: int
    has_watchers: bool = False


@dataclass
class UsageRecord:
    """Usage counters of one account for one calendar-month billing period."""

    id: int
    account_id: int
    period_start: str                 # ISO date, 1st of the month
    period_end: str                   # ISO date, last day of the month
    tier: str                         # fixed at creation
    recording_count: int = 0
    recording_duration_minutes: int = 0
    comment_count: int = 0
    created_at: str = ""


@dataclass
class Participant:
    name: str
    relationship: str = ""


@dataclass
class SessionSetup:
    """What the owner tells us before pressing record."""

    title: str
    participants: list[Participant] = field(default_factory=list)
    context: str = ""
    location: str = ""
    energy_level: int = 5


@dataclass
class RecordingSession:
    id: int
    account_id: int
    setup: SessionSetup
    status: SessionStatus
    started_at: str | None = None
    stopped_at: str | None = None
    duration_seconds: int | None = None
    audio_ref: str | None = None
    transcript: str | None = None
    transcript_quality: str | None = None
    extraction_method: str | None = None
    aggregate_confidence: int | None = None
    error_message: str | None = None
    period_start: str | None = None   # billing period the quota was taken from


@dataclass
class ExtractedAction:
    """A commitment pulled out of a recorded conversation."""

    id: int
    session_id: int
    account_id: int
    action_type: ActionType
    text: str
    priority_level: int               # 1..10
    confidence_score: float           # 0..1
    due_context: str = ""
    relationship_impact: str = ""
    emotional_stakes: str = ""
    intent_behind: str = ""
    transcript_excerpt: str = ""
    status: ActionStatus = ActionStatus.PENDING
    version: int = 0
    scheduled_date: str | None = None
    scheduled_time: str | None = None
    completed_date: str | None = None
    created_at: str = ""


@dataclass
class ActionConfirmation:
    """Append-only audit note written on every action transition."""

    id: int
    action_id: int
    account_id: int
    confirmation_status: str          # confirmed | modified | rejected | scheduled | completed
    modifications: dict = field(default_factory=dict)
    note: str | None = None
    created_at: str = ""


@dataclass
class CalendarEvent:
    id: int
    account_id: int
    action_id: int
    title: str
    description: str
    date: str                         # YYYY-MM-DD
    time: str                         # HH:MM
    category: str


@dataclass
class DailyAction:
    id: int
    account_id: int
    action_id: int
    calendar_event_id: int
    title: str
    date: str
    start_time: str
    duration_minutes: int
    focus_area: FocusArea
    difficulty_level: int
    status: str = "pending"           # pending | completed


@dataclass
class Reminder:
    id: int
    event_id: int
    account_id: int
    reminder_time: ReminderTime
    methods: list[str]
    is_active: bool = True
    sent_at: str | None = None
    remind_at: str | None = None      # absolute ISO datetime, set for snoozed reminders
    snoozed_from: int | None = None
    snooze_reason: str | None = None


@dataclass
class CompletionEvent:
    """Emitted when an action reaches `completed`; feeds streak accounting."""

    action_id: int
    account_id: int
    completed_date: str


@dataclass
class ActionComment:
    id: int
    action_id: int
    account_id: int
    body: str
    created_at: str = ""
