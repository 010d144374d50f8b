"""
PACT Bridge — SQLite storage.

One repository class per aggregate, all sharing the same database file.
Every state change that can race (quota increments, status transitions,
reminder firing) is a single conditional UPDATE whose rowcount decides
whether it happened; nothing here does read-compare-write.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path

from src.data.models import (
    ActionComment,
    ActionConfirmation,
    ActionStatus,
    ActionType,
    CalendarEvent,
    CompletionEvent,
    DailyAction,
    ExtractedAction,
    FocusArea,
    Participant,
    RecordingSession,
    Reminder,
    ReminderTime,
    SessionSetup,
    SessionStatus,
    UsageRecord,
)

logger = logging.getLogger(__name__)


class ConcurrentUpdateError(Exception):
    """A guarded update inside a transaction matched no row."""


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


class _SQLiteDB:
    """Connection handling shared by the repositories below."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Usage ledger
# ---------------------------------------------------------------------------


class UsageDB(_SQLiteDB):
    """Per-account, per-period usage counters."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS usage_records (
                    id                         INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_id                 INTEGER NOT NULL,
                    period_start               TEXT    NOT NULL,
                    period_end                 TEXT    NOT NULL,
                    tier                       TEXT    NOT NULL,
                    recording_count            INTEGER NOT NULL DEFAULT 0,
                    recording_duration_minutes INTEGER NOT NULL DEFAULT 0,
                    comment_count              INTEGER NOT NULL DEFAULT 0,
                    created_at                 TEXT    NOT NULL,
                    UNIQUE (account_id, period_start)
                )
            """)
        logger.debug("Usage table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> UsageRecord:
        return UsageRecord(
            id=row["id"],
            account_id=row["account_id"],
            period_start=row["period_start"],
            period_end=row["period_end"],
            tier=row["tier"],
            recording_count=row["recording_count"],
            recording_duration_minutes=row["recording_duration_minutes"],
            comment_count=row["comment_count"],
            created_at=row["created_at"],
        )

    def get(self, account_id: int, period_start: str) -> UsageRecord | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM usage_records WHERE account_id = ? AND period_start = ?",
                (account_id, period_start),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_record(row)

    def get_or_create(
        self, account_id: int, period_start: str, period_end: str, tier: str,
    ) -> UsageRecord:
        """Return the record for the period, creating it with zero counters.

        INSERT OR IGNORE keeps this safe when two devices race to create it;
        the loser simply reads the winner's row (and its tier).
        """
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO usage_records
                    (account_id, period_start, period_end, tier, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (account_id, period_start, period_end, tier, _now()),
            )
            if cursor.rowcount:
                logger.info(
                    "Usage period %s..%s opened for account %d on tier '%s'",
                    period_start, period_end, account_id, tier,
                )
            row = conn.execute(
                "SELECT * FROM usage_records WHERE account_id = ? AND period_start = ?",
                (account_id, period_start),
            ).fetchone()
        return self._row_to_record(row)

    def try_increment_recording(
        self, account_id: int, period_start: str, limit: int, duration_delta: int = 0,
    ) -> bool:
        """Count one recording if the limit allows it. Returns whether it counted."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE usage_records
                   SET recording_count = recording_count + 1,
                       recording_duration_minutes = recording_duration_minutes + ?
                 WHERE account_id = ? AND period_start = ?
                   AND (? < 0 OR recording_count < ?)
                """,
                (duration_delta, account_id, period_start, limit, limit),
            )
        return cursor.rowcount > 0

    def add_duration(self, account_id: int, period_start: str, minutes: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE usage_records
                   SET recording_duration_minutes = recording_duration_minutes + ?
                 WHERE account_id = ? AND period_start = ?
                """,
                (minutes, account_id, period_start),
            )
        return cursor.rowcount > 0

    def refund_recording(self, account_id: int, period_start: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE usage_records SET recording_count = recording_count - 1
                 WHERE account_id = ? AND period_start = ? AND recording_count > 0
                """,
                (account_id, period_start),
            )
        return cursor.rowcount > 0

    def try_increment_comment(self, account_id: int, period_start: str, limit: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE usage_records SET comment_count = comment_count + 1
                 WHERE account_id = ? AND period_start = ?
                   AND (? < 0 OR comment_count < ?)
                """,
                (account_id, period_start, limit, limit),
            )
        return cursor.rowcount > 0

    def list_for_account(self, account_id: int) -> list[UsageRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM usage_records WHERE account_id = ? ORDER BY period_start",
                (account_id,),
            ).fetchall()
        return [self._row_to_record(r) for r in rows]


# ---------------------------------------------------------------------------
# Recording sessions
# ---------------------------------------------------------------------------

_SESSION_FIELDS = {
    "started_at", "stopped_at", "duration_seconds", "audio_ref", "transcript",
    "transcript_quality", "extraction_method", "aggregate_confidence",
    "error_message",
}


class SessionDB(_SQLiteDB):
    """Recording sessions and their lifecycle status."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS recording_sessions (
                    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_id           INTEGER NOT NULL,
                    title                TEXT    NOT NULL,
                    participants         TEXT    NOT NULL DEFAULT '[]',
                    context              TEXT    NOT NULL DEFAULT '',
                    location             TEXT    NOT NULL DEFAULT '',
                    energy_level         INTEGER NOT NULL DEFAULT 5,
                    status               TEXT    NOT NULL,
                    started_at           TEXT,
                    stopped_at           TEXT,
                    duration_seconds     INTEGER,
                    audio_ref            TEXT,
                    transcript           TEXT,
                    transcript_quality   TEXT,
                    extraction_method    TEXT,
                    aggregate_confidence INTEGER,
                    error_message        TEXT,
                    period_start         TEXT,
                    created_at           TEXT    NOT NULL
                )
            """)
        logger.debug("Sessions table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> RecordingSession:
        participants = [Participant(**p) for p in json.loads(row["participants"] or "[]")]
        return RecordingSession(
            id=row["id"],
            account_id=row["account_id"],
            setup=SessionSetup(
                title=row["title"],
                participants=participants,
                context=row["context"],
                location=row["location"],
                energy_level=row["energy_level"],
            ),
            status=SessionStatus(row["status"]),
            started_at=row["started_at"],
            stopped_at=row["stopped_at"],
            duration_seconds=row["duration_seconds"],
            audio_ref=row["audio_ref"],
            transcript=row["transcript"],
            transcript_quality=row["transcript_quality"],
            extraction_method=row["extraction_method"],
            aggregate_confidence=row["aggregate_confidence"],
            error_message=row["error_message"],
            period_start=row["period_start"],
        )

    def create(
        self,
        account_id: int,
        setup: SessionSetup,
        status: SessionStatus,
        started_at: str | None = None,
        period_start: str | None = None,
    ) -> RecordingSession:
        participants = json.dumps(
            [{"name": p.name, "relationship": p.relationship} for p in setup.participants]
        )
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO recording_sessions
                    (account_id, title, participants, context, location, energy_level,
                     status, started_at, period_start, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    account_id, setup.title, participants, setup.context,
                    setup.location, setup.energy_level, status.value,
                    started_at, period_start, started_at or _now(),
                ),
            )
            session_id = cursor.lastrowid
        logger.info("Session #%d created for account %d (%s)", session_id, account_id, status.value)
        return RecordingSession(
            id=session_id,
            account_id=account_id,
            setup=setup,
            status=status,
            started_at=started_at,
            period_start=period_start,
        )

    def get(self, session_id: int) -> RecordingSession | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM recording_sessions WHERE id = ?", (session_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_session(row)

    def transition(
        self,
        session_id: int,
        from_statuses: tuple[SessionStatus, ...],
        to_status: SessionStatus,
        **fields,
    ) -> bool:
        """Move a session to `to_status` only if it is currently in `from_statuses`."""
        unknown = set(fields) - _SESSION_FIELDS
        if unknown:
            raise ValueError(f"Unknown session fields: {sorted(unknown)}")

        assignments = ["status = ?"] + [f"{name} = ?" for name in fields]
        placeholders = ", ".join("?" for _ in from_statuses)
        params: list = [to_status.value, *fields.values(), session_id]
        params.extend(s.value for s in from_statuses)

        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE recording_sessions SET {', '.join(assignments)} "
                f"WHERE id = ? AND status IN ({placeholders})",
                params,
            )
        moved = cursor.rowcount > 0
        if moved:
            logger.info("Session #%d -> %s", session_id, to_status.value)
        return moved

    def delete(self, session_id: int, statuses: tuple[SessionStatus, ...]) -> bool:
        """Discard a session (and anything extracted from it) if still in `statuses`."""
        placeholders = ", ".join("?" for _ in statuses)
        with self._connect() as conn:
            cursor = conn.execute(
                f"DELETE FROM recording_sessions WHERE id = ? AND status IN ({placeholders})",
                [session_id, *(s.value for s in statuses)],
            )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Session #%d discarded", session_id)
        return deleted

    def list_for_account(self, account_id: int) -> list[RecordingSession]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM recording_sessions WHERE account_id = ? ORDER BY created_at DESC, id DESC",
                (account_id,),
            ).fetchall()
        return [self._row_to_session(r) for r in rows]

    def list_account_ids(self) -> list[int]:
        """Accounts that still have at least one stored session."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT DISTINCT account_id FROM recording_sessions ORDER BY account_id"
            ).fetchall()
        return [row["account_id"] for row in rows]

    def purge_created_before(self, account_id: int, cutoff: str) -> int:
        """Delete sessions created before `cutoff` plus their actions and audit notes."""
        with self._connect() as conn:
            ids = [
                row["id"] for row in conn.execute(
                    "SELECT id FROM recording_sessions WHERE account_id = ? AND created_at < ?",
                    (account_id, cutoff),
                ).fetchall()
            ]
            if not ids:
                return 0
            placeholders = ", ".join("?" for _ in ids)
            has_actions = conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'extracted_actions'"
            ).fetchone()
            has_comments = conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'action_comments'"
            ).fetchone()
            if has_actions:
                conn.execute(
                    f"DELETE FROM action_confirmations WHERE action_id IN "
                    f"(SELECT id FROM extracted_actions WHERE session_id IN ({placeholders}))",
                    ids,
                )
                if has_comments:
                    conn.execute(
                        f"DELETE FROM action_comments WHERE action_id IN "
                        f"(SELECT id FROM extracted_actions WHERE session_id IN ({placeholders}))",
                        ids,
                    )
                conn.execute(
                    f"DELETE FROM extracted_actions WHERE session_id IN ({placeholders})", ids,
                )
            conn.execute(f"DELETE FROM recording_sessions WHERE id IN ({placeholders})", ids)
        logger.info("Purged %d expired session(s) for account %d", len(ids), account_id)
        return len(ids)


# ---------------------------------------------------------------------------
# Extracted actions + confirmation audit trail
# ---------------------------------------------------------------------------

_ACTION_FIELDS = {
    "text", "priority_level", "due_context", "action_type",
    "scheduled_date", "scheduled_time", "completed_date",
}


class ActionDB(_SQLiteDB):
    """Extracted actions and their append-only confirmation notes."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS extracted_actions (
                    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id          INTEGER NOT NULL,
                    account_id          INTEGER NOT NULL,
                    action_type         TEXT    NOT NULL,
                    text                TEXT    NOT NULL,
                    priority_level      INTEGER NOT NULL,
                    confidence_score    REAL    NOT NULL,
                    due_context         TEXT    NOT NULL DEFAULT '',
                    relationship_impact TEXT    NOT NULL DEFAULT '',
                    emotional_stakes    TEXT    NOT NULL DEFAULT '',
                    intent_behind       TEXT    NOT NULL DEFAULT '',
                    transcript_excerpt  TEXT    NOT NULL DEFAULT '',
                    status              TEXT    NOT NULL DEFAULT 'pending',
                    version             INTEGER NOT NULL DEFAULT 0,
                    scheduled_date      TEXT,
                    scheduled_time      TEXT,
                    completed_date      TEXT,
                    created_at          TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS action_confirmations (
                    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
                    action_id           INTEGER NOT NULL,
                    account_id          INTEGER NOT NULL,
                    confirmation_status TEXT    NOT NULL,
                    modifications       TEXT    NOT NULL DEFAULT '{}',
                    note                TEXT,
                    created_at          TEXT    NOT NULL
                )
            """)
        logger.debug("Action tables initialized at %s", self._db_path)

    @staticmethod
    def _row_to_action(row: sqlite3.Row) -> ExtractedAction:
        return ExtractedAction(
            id=row["id"],
            session_id=row["session_id"],
            account_id=row["account_id"],
            action_type=ActionType(row["action_type"]),
            text=row["text"],
            priority_level=row["priority_level"],
            confidence_score=row["confidence_score"],
            due_context=row["due_context"],
            relationship_impact=row["relationship_impact"],
            emotional_stakes=row["emotional_stakes"],
            intent_behind=row["intent_behind"],
            transcript_excerpt=row["transcript_excerpt"],
            status=ActionStatus(row["status"]),
            version=row["version"],
            scheduled_date=row["scheduled_date"],
            scheduled_time=row["scheduled_time"],
            completed_date=row["completed_date"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_confirmation(row: sqlite3.Row) -> ActionConfirmation:
        return ActionConfirmation(
            id=row["id"],
            action_id=row["action_id"],
            account_id=row["account_id"],
            confirmation_status=row["confirmation_status"],
            modifications=json.loads(row["modifications"] or "{}"),
            note=row["note"],
            created_at=row["created_at"],
        )

    def add_many(self, session_id: int, account_id: int, items: list[dict]) -> list[ExtractedAction]:
        """Insert a batch of pending actions in one transaction."""
        created_at = _now()
        ids: list[int] = []
        with self._connect() as conn:
            for item in items:
                cursor = conn.execute(
                    """
                    INSERT INTO extracted_actions
                        (session_id, account_id, action_type, text, priority_level,
                         confidence_score, due_context, relationship_impact,
                         emotional_stakes, intent_behind, transcript_excerpt,
                         status, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?)
                    """,
                    (
                        session_id, account_id, item["action_type"], item["text"],
                        item["priority_level"], item["confidence_score"],
                        item.get("due_context", ""), item.get("relationship_impact", ""),
                        item.get("emotional_stakes", ""), item.get("intent_behind", ""),
                        item.get("transcript_excerpt", ""), created_at,
                    ),
                )
                ids.append(cursor.lastrowid)
        logger.info("Stored %d extracted action(s) for session #%d", len(ids), session_id)
        return [self.get(action_id) for action_id in ids]

    def get(self, action_id: int) -> ExtractedAction | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM extracted_actions WHERE id = ?", (action_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_action(row)

    def list_for_session(self, session_id: int) -> list[ExtractedAction]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM extracted_actions WHERE session_id = ? ORDER BY id",
                (session_id,),
            ).fetchall()
        return [self._row_to_action(r) for r in rows]

    def list_by_status(self, account_id: int, status: ActionStatus) -> list[ExtractedAction]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM extracted_actions WHERE account_id = ? AND status = ? ORDER BY id",
                (account_id, status.value),
            ).fetchall()
        return [self._row_to_action(r) for r in rows]

    @staticmethod
    def update_status(
        conn: sqlite3.Connection,
        action_id: int,
        from_status: ActionStatus,
        to_status: ActionStatus,
        expected_version: int,
        fields: dict | None = None,
    ) -> bool:
        """Guarded status change on an open connection (part of a caller's transaction)."""
        fields = fields or {}
        unknown = set(fields) - _ACTION_FIELDS
        if unknown:
            raise ValueError(f"Unknown action fields: {sorted(unknown)}")

        assignments = ["status = ?", "version = version + 1"]
        assignments += [f"{name} = ?" for name in fields]
        cursor = conn.execute(
            f"UPDATE extracted_actions SET {', '.join(assignments)} "
            "WHERE id = ? AND status = ? AND version = ?",
            [to_status.value, *fields.values(), action_id, from_status.value, expected_version],
        )
        return cursor.rowcount > 0

    @staticmethod
    def insert_confirmation(
        conn: sqlite3.Connection,
        action_id: int,
        account_id: int,
        confirmation_status: str,
        modifications: dict | None = None,
        note: str | None = None,
    ) -> None:
        conn.execute(
            """
            INSERT INTO action_confirmations
                (action_id, account_id, confirmation_status, modifications, note, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                action_id, account_id, confirmation_status,
                json.dumps(modifications or {}), note, _now(),
            ),
        )

    def transition(
        self,
        action: ExtractedAction,
        to_status: ActionStatus,
        audit_status: str,
        fields: dict | None = None,
        modifications: dict | None = None,
        note: str | None = None,
    ) -> bool:
        """Guarded status change plus its audit note, in one transaction."""
        with self._connect() as conn:
            moved = self.update_status(
                conn, action.id, action.status, to_status, action.version, fields,
            )
            if moved:
                self.insert_confirmation(
                    conn, action.id, action.account_id, audit_status, modifications, note,
                )
        return moved

    def list_confirmations(self, action_id: int) -> list[ActionConfirmation]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM action_confirmations WHERE action_id = ? ORDER BY id",
                (action_id,),
            ).fetchall()
        return [self._row_to_confirmation(r) for r in rows]

    def delete(self, action_id: int) -> bool:
        """Explicit user deletion. Audit notes are kept."""
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM extracted_actions WHERE id = ?", (action_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Action #%d deleted by user", action_id)
        return deleted


# ---------------------------------------------------------------------------
# Calendar events + daily actions
# ---------------------------------------------------------------------------


class ScheduleDB(_SQLiteDB):
    """Calendar events and their paired daily actions."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS calendar_events (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_id  INTEGER NOT NULL,
                    action_id   INTEGER NOT NULL UNIQUE,
                    title       TEXT    NOT NULL,
                    description TEXT    NOT NULL DEFAULT '',
                    date        TEXT    NOT NULL,
                    time        TEXT    NOT NULL,
                    category    TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS daily_actions (
                    id                INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_id        INTEGER NOT NULL,
                    action_id         INTEGER NOT NULL UNIQUE,
                    calendar_event_id INTEGER NOT NULL,
                    title             TEXT    NOT NULL,
                    date              TEXT    NOT NULL,
                    start_time        TEXT    NOT NULL,
                    duration_minutes  INTEGER NOT NULL,
                    focus_area        TEXT    NOT NULL,
                    difficulty_level  INTEGER NOT NULL,
                    status            TEXT    NOT NULL DEFAULT 'pending'
                )
            """)
        logger.debug("Schedule tables initialized at %s", self._db_path)

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> CalendarEvent:
        return CalendarEvent(
            id=row["id"],
            account_id=row["account_id"],
            action_id=row["action_id"],
            title=row["title"],
            description=row["description"],
            date=row["date"],
            time=row["time"],
            category=row["category"],
        )

    @staticmethod
    def _row_to_daily_action(row: sqlite3.Row) -> DailyAction:
        return DailyAction(
            id=row["id"],
            account_id=row["account_id"],
            action_id=row["action_id"],
            calendar_event_id=row["calendar_event_id"],
            title=row["title"],
            date=row["date"],
            start_time=row["start_time"],
            duration_minutes=row["duration_minutes"],
            focus_area=FocusArea(row["focus_area"]),
            difficulty_level=row["difficulty_level"],
            status=row["status"],
        )

    def _insert_event(self, conn: sqlite3.Connection, event: CalendarEvent) -> int:
        cursor = conn.execute(
            """
            INSERT INTO calendar_events
                (account_id, action_id, title, description, date, time, category)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.account_id, event.action_id, event.title, event.description,
                event.date, event.time, event.category,
            ),
        )
        return cursor.lastrowid

    def _insert_daily_action(self, conn: sqlite3.Connection, daily: DailyAction) -> int:
        cursor = conn.execute(
            """
            INSERT INTO daily_actions
                (account_id, action_id, calendar_event_id, title, date, start_time,
                 duration_minutes, focus_area, difficulty_level, status)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                daily.account_id, daily.action_id, daily.calendar_event_id, daily.title,
                daily.date, daily.start_time, daily.duration_minutes,
                daily.focus_area.value, daily.difficulty_level, daily.status,
            ),
        )
        return cursor.lastrowid

    def create_scheduled_pair(
        self,
        action: ExtractedAction,
        event: CalendarEvent,
        daily: DailyAction,
    ) -> tuple[CalendarEvent, DailyAction]:
        """Write event + daily action and advance the action to `scheduled`.

        All three writes share one transaction: if any of them fails, the
        connection context manager rolls the others back.

        Raises:
            ConcurrentUpdateError: the action was no longer `confirmed` at
                the expected version.
            sqlite3.Error: any storage failure.
        """
        with self._connect() as conn:
            moved = ActionDB.update_status(
                conn, action.id, ActionStatus.CONFIRMED, ActionStatus.SCHEDULED,
                action.version,
                {"scheduled_date": event.date, "scheduled_time": event.time},
            )
            if not moved:
                raise ConcurrentUpdateError(
                    f"Action {action.id} is no longer confirmed at version {action.version}"
                )
            event.id = self._insert_event(conn, event)
            daily.calendar_event_id = event.id
            daily.id = self._insert_daily_action(conn, daily)
            ActionDB.insert_confirmation(
                conn, action.id, action.account_id, ActionStatus.SCHEDULED.value,
                note=f"{event.date} {event.time}",
            )
        logger.info(
            "Action #%d scheduled: event #%d / daily action #%d on %s %s",
            action.id, event.id, daily.id, event.date, event.time,
        )
        return event, daily

    def complete_action(self, action: ExtractedAction, completed_date: str) -> bool:
        """Advance `scheduled -> completed` and close the paired daily action."""
        with self._connect() as conn:
            moved = ActionDB.update_status(
                conn, action.id, ActionStatus.SCHEDULED, ActionStatus.COMPLETED,
                action.version, {"completed_date": completed_date},
            )
            if not moved:
                return False
            conn.execute(
                "UPDATE daily_actions SET status = 'completed' WHERE action_id = ?",
                (action.id,),
            )
            ActionDB.insert_confirmation(
                conn, action.id, action.account_id, ActionStatus.COMPLETED.value,
                note=completed_date,
            )
        return True

    def get_event(self, event_id: int) -> CalendarEvent | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM calendar_events WHERE id = ?", (event_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_event(row)

    def get_event_for_action(self, action_id: int) -> CalendarEvent | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM calendar_events WHERE action_id = ?", (action_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_event(row)

    def get_daily_action_for(self, action_id: int) -> DailyAction | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM daily_actions WHERE action_id = ?", (action_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_daily_action(row)

    def list_events(
        self, account_id: int, start_date: str, end_date: str,
    ) -> list[CalendarEvent]:
        """Events for an account between two ISO dates, inclusive."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM calendar_events
                 WHERE account_id = ? AND date >= ? AND date <= ?
                 ORDER BY date, time
                """,
                (account_id, start_date, end_date),
            ).fetchall()
        return [self._row_to_event(r) for r in rows]

    def list_daily_actions(self, account_id: int, target_date: str) -> list[DailyAction]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM daily_actions
                 WHERE account_id = ? AND date = ?
                 ORDER BY start_time
                """,
                (account_id, target_date),
            ).fetchall()
        return [self._row_to_daily_action(r) for r in rows]

    def list_upcoming_events(self, from_date: str) -> list[CalendarEvent]:
        """Events of every account on or after `from_date`."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM calendar_events WHERE date >= ? ORDER BY date, time",
                (from_date,),
            ).fetchall()
        return [self._row_to_event(r) for r in rows]


# ---------------------------------------------------------------------------
# Reminders
# ---------------------------------------------------------------------------


class ReminderDB(_SQLiteDB):
    """Event reminders. A row is frozen once `sent_at` is set."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS event_reminders (
                    id            INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id      INTEGER NOT NULL,
                    account_id    INTEGER NOT NULL,
                    reminder_time TEXT    NOT NULL,
                    methods       TEXT    NOT NULL DEFAULT '[]',
                    is_active     INTEGER NOT NULL DEFAULT 1,
                    sent_at       TEXT,
                    remind_at     TEXT,
                    snoozed_from  INTEGER,
                    snooze_reason TEXT,
                    created_at    TEXT    NOT NULL
                )
            """)
        logger.debug("Reminders table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_reminder(row: sqlite3.Row) -> Reminder:
        return Reminder(
            id=row["id"],
            event_id=row["event_id"],
            account_id=row["account_id"],
            reminder_time=ReminderTime(row["reminder_time"]),
            methods=json.loads(row["methods"] or "[]"),
            is_active=bool(row["is_active"]),
            sent_at=row["sent_at"],
            remind_at=row["remind_at"],
            snoozed_from=row["snoozed_from"],
            snooze_reason=row["snooze_reason"],
        )

    @staticmethod
    def _insert(conn: sqlite3.Connection, reminder: Reminder) -> int:
        cursor = conn.execute(
            """
            INSERT INTO event_reminders
                (event_id, account_id, reminder_time, methods, is_active,
                 remind_at, snoozed_from, snooze_reason, created_at)
            VALUES (?, ?, ?, ?, 1, ?, ?, ?, ?)
            """,
            (
                reminder.event_id, reminder.account_id, reminder.reminder_time.value,
                json.dumps(reminder.methods), reminder.remind_at,
                reminder.snoozed_from, reminder.snooze_reason, _now(),
            ),
        )
        return cursor.lastrowid

    def add_many(self, reminders: list[Reminder]) -> list[Reminder]:
        with self._connect() as conn:
            for reminder in reminders:
                reminder.id = self._insert(conn, reminder)
        return reminders

    def get(self, reminder_id: int) -> Reminder | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM event_reminders WHERE id = ?", (reminder_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_reminder(row)

    def list_for_event(self, event_id: int) -> list[Reminder]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM event_reminders WHERE event_id = ? ORDER BY id",
                (event_id,),
            ).fetchall()
        return [self._row_to_reminder(r) for r in rows]

    def list_pending(self) -> list[Reminder]:
        """Active reminders that have not fired yet."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM event_reminders WHERE is_active = 1 AND sent_at IS NULL ORDER BY id"
            ).fetchall()
        return [self._row_to_reminder(r) for r in rows]

    def mark_sent(self, reminder_id: int, sent_at: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE event_reminders SET sent_at = ? WHERE id = ? AND sent_at IS NULL",
                (sent_at, reminder_id),
            )
        return cursor.rowcount > 0

    def dismiss(self, reminder_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE event_reminders SET is_active = 0 WHERE id = ? AND sent_at IS NULL",
                (reminder_id,),
            )
        return cursor.rowcount > 0

    def snooze(self, original: Reminder, replacement: Reminder, sent_at: str) -> Reminder:
        """Close `original` (if it has not fired) and insert `replacement`, atomically."""
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE event_reminders SET sent_at = ?, is_active = 0
                 WHERE id = ? AND sent_at IS NULL
                """,
                (sent_at, original.id),
            )
            replacement.id = self._insert(conn, replacement)
        return replacement


# ---------------------------------------------------------------------------
# Completion events
# ---------------------------------------------------------------------------


class CompletionDB(_SQLiteDB):
    """Completion events for downstream streak and score accounting."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS completion_events (
                    id             INTEGER PRIMARY KEY AUTOINCREMENT,
                    action_id      INTEGER NOT NULL,
                    account_id     INTEGER NOT NULL,
                    completed_date TEXT    NOT NULL,
                    created_at     TEXT    NOT NULL
                )
            """)
        logger.debug("Completion table initialized at %s", self._db_path)

    def add(self, event: CompletionEvent) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO completion_events (action_id, account_id, completed_date, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (event.action_id, event.account_id, event.completed_date, _now()),
            )

    def list_for_account(self, account_id: int, since: str | None = None) -> list[CompletionEvent]:
        query = "SELECT * FROM completion_events WHERE account_id = ?"
        params: list = [account_id]
        if since is not None:
            query += " AND completed_date >= ?"
            params.append(since)
        query += " ORDER BY completed_date, id"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            CompletionEvent(
                action_id=r["action_id"],
                account_id=r["account_id"],
                completed_date=r["completed_date"],
            )
            for r in rows
        ]


# ---------------------------------------------------------------------------
# Action comments
# ---------------------------------------------------------------------------


class CommentDB(_SQLiteDB):
    """Free-text notes the owner leaves on an action."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS action_comments (
                    id         INTEGER PRIMARY KEY AUTOINCREMENT,
                    action_id  INTEGER NOT NULL,
                    account_id INTEGER NOT NULL,
                    body       TEXT    NOT NULL,
                    created_at TEXT    NOT NULL
                )
            """)
        logger.debug("Comments table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_comment(row: sqlite3.Row) -> ActionComment:
        return ActionComment(
            id=row["id"],
            action_id=row["action_id"],
            account_id=row["account_id"],
            body=row["body"],
            created_at=row["created_at"],
        )

    def add(self, action_id: int, account_id: int, body: str) -> ActionComment:
        created_at = _now()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO action_comments (action_id, account_id, body, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (action_id, account_id, body, created_at),
            )
        return ActionComment(
            id=cursor.lastrowid,
            action_id=action_id,
            account_id=account_id,
            body=body,
            created_at=created_at,
        )

    def list_for_action(self, action_id: int) -> list[ActionComment]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM action_comments WHERE action_id = ? ORDER BY id",
                (action_id,),
            ).fetchall()
        return [self._row_to_comment(r) for r in rows]


# ---------------------------------------------------------------------------
# Tier assignments
# ---------------------------------------------------------------------------


class TierDB(_SQLiteDB):
    """Which billing tier each account is on. Missing rows mean the default tier."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS account_tiers (
                    account_id INTEGER PRIMARY KEY,
                    tier       TEXT    NOT NULL,
                    updated_at TEXT    NOT NULL
                )
            """)
        logger.debug("Tier table initialized at %s", self._db_path)

    def get(self, account_id: int) -> str | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT tier FROM account_tiers WHERE account_id = ?", (account_id,)
            ).fetchone()
        return row["tier"] if row else None

    def set(self, account_id: int, tier: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO account_tiers (account_id, tier, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(account_id) DO UPDATE SET tier = excluded.tier, updated_at = excluded.updated_at
                """,
                (account_id, tier, _now()),
            )
