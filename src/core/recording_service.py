"""
PACT Bridge — Recording Session lifecycle.

    idle -> recording -> stopped -> processing -> complete | failed

Quota is consumed when a recording starts, not when it ends, so a
cancel-and-retry loop cannot be used to record for free. Extraction runs
exactly once per stopped session; its failures land on the session status
instead of propagating to the caller.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from src.core.errors import ExtractionFailed, InvalidTransition, QuotaExceeded
from src.core.extraction_intake import InvalidPayload
from src.core.usage_ledger import LimitStatus, period_bounds, recording_limit_status
from src.data.models import UNLIMITED, SessionStatus
from src.ports.extraction_port import ExtractionRequest

if TYPE_CHECKING:
    from src.core.extraction_intake import ExtractionIntake, IntakeResult
    from src.core.usage_ledger import UsageLedger
    from src.data.db import SessionDB
    from src.data.models import RecordingSession, SessionSetup
    from src.ports.extraction_port import ExtractionPort

logger = logging.getLogger(__name__)

_CANCELLABLE = (SessionStatus.IDLE, SessionStatus.RECORDING, SessionStatus.STOPPED)
_STOPPED_OR_LATER = (
    SessionStatus.STOPPED, SessionStatus.PROCESSING,
    SessionStatus.COMPLETE, SessionStatus.FAILED,
)


@dataclass
class StopResult:
    """What `stop()` hands to extraction: where the audio is and how long it ran."""

    session_id: int
    audio_ref: str | None
    duration_seconds: int
    billed_minutes: int


@dataclass
class ExtractionOutcome:
    session_id: int
    success: bool
    intake: IntakeResult | None = None
    error: ExtractionFailed | None = None


def _billed_minutes(duration_seconds: int) -> int:
    return math.ceil(duration_seconds / 60)


def format_duration(duration_seconds: int) -> str:
    """Display form of a recording length, e.g. 3:07 or 1:02:45."""
    hours, rest = divmod(duration_seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


class RecordingService:
    """Owns recording sessions from start to extracted."""

    def __init__(
        self,
        session_db: SessionDB,
        ledger: UsageLedger,
        extractor: ExtractionPort | None = None,
        intake: ExtractionIntake | None = None,
        refund_on_cancel: bool | None = None,
    ) -> None:
        if refund_on_cancel is None:
            from src.config import settings
            refund_on_cancel = settings.REFUND_QUOTA_ON_CANCEL

        self._sessions = session_db
        self._ledger = ledger
        self._extractor = extractor
        self._intake = intake
        self._refund_on_cancel = refund_on_cancel

    def _get(self, session_id: int) -> RecordingSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise ValueError(f"Session {session_id} not found")
        return session

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    def start(
        self, account_id: int, setup: SessionSetup, now: datetime | None = None,
    ) -> RecordingSession:
        """Consume one recording from the quota and open a session.

        Raises:
            QuotaExceeded: the tier allows no more recordings this period.
        """
        now = now or datetime.now()
        if not self._ledger.record_usage(account_id, 0, today=now.date()):
            raise QuotaExceeded(account_id, self._ledger.recording_limit(account_id))

        period_start = period_bounds(now.date())[0].isoformat()
        session = self._sessions.create(
            account_id,
            setup,
            SessionStatus.RECORDING,
            started_at=now.isoformat(),
            period_start=period_start,
        )
        logger.info("Recording started: session #%d '%s'", session.id, setup.title)
        return session

    def stop(
        self, session_id: int, audio_ref: str | None = None, now: datetime | None = None,
    ) -> StopResult:
        """End capture. Calling it again returns the first call's result."""
        session = self._get(session_id)
        if session.status in _STOPPED_OR_LATER:
            return self._stop_result(session)
        if session.status is not SessionStatus.RECORDING:
            logger.error("Stop rejected for session #%d in '%s'", session_id, session.status.value)
            raise InvalidTransition("session", session.status.value, "stop")

        now = now or datetime.now()
        elapsed = (now - datetime.fromisoformat(session.started_at)).total_seconds()
        duration_seconds = max(0, round(elapsed))

        moved = self._sessions.transition(
            session_id,
            (SessionStatus.RECORDING,),
            SessionStatus.STOPPED,
            stopped_at=now.isoformat(),
            duration_seconds=duration_seconds,
            audio_ref=audio_ref,
        )
        if not moved:
            # Another device stopped it first; report what that stop recorded.
            session = self._get(session_id)
            if session.status in _STOPPED_OR_LATER:
                return self._stop_result(session)
            raise InvalidTransition("session", session.status.value, "stop")

        billed = _billed_minutes(duration_seconds)
        self._ledger.add_duration(session.account_id, billed, period_start=session.period_start)
        logger.info(
            "Recording stopped: session #%d after %s (%d billed minute(s))",
            session_id, format_duration(duration_seconds), billed,
        )
        return StopResult(
            session_id=session_id,
            audio_ref=audio_ref,
            duration_seconds=duration_seconds,
            billed_minutes=billed,
        )

    @staticmethod
    def _stop_result(session: RecordingSession) -> StopResult:
        duration = session.duration_seconds or 0
        return StopResult(
            session_id=session.id,
            audio_ref=session.audio_ref,
            duration_seconds=duration,
            billed_minutes=_billed_minutes(duration),
        )

    def cancel(self, session_id: int) -> None:
        """Discard a session that has not reached extraction yet."""
        session = self._get(session_id)
        if session.status not in _CANCELLABLE:
            logger.error("Cancel rejected for session #%d in '%s'", session_id, session.status.value)
            raise InvalidTransition("session", session.status.value, "cancel")

        if not self._sessions.delete(session_id, _CANCELLABLE):
            current = self._sessions.get(session_id)
            status = current.status.value if current else "deleted"
            raise InvalidTransition("session", status, "cancel")

        if self._refund_on_cancel and session.period_start:
            self._ledger.refund_recording(session.account_id, session.period_start)
        logger.info("Recording cancelled: session #%d", session_id)

    def within_length_limit(self, account_id: int, duration_seconds: int) -> bool:
        """Whether a recording of `duration_seconds` fits the tier's per-recording limit."""
        max_seconds = self._ledger.max_recording_seconds(account_id)
        return max_seconds == UNLIMITED or duration_seconds <= max_seconds

    def abandon(self, session_id: int, reason: str) -> bool:
        """Mark a session whose audio never arrived as `failed`.

        Only sessions that have not reached extraction can be abandoned; the
        consumed recording is not refunded. Returns whether the session moved.
        """
        moved = self._sessions.transition(
            session_id,
            (SessionStatus.RECORDING, SessionStatus.STOPPED),
            SessionStatus.FAILED,
            error_message=reason,
        )
        if moved:
            logger.warning("Session #%d abandoned: %s", session_id, reason)
        return moved

    def limit_status(self, session_id: int, now: datetime | None = None) -> LimitStatus:
        """How a running recording stands against the tier's per-recording limit."""
        session = self._get(session_id)
        if session.status is not SessionStatus.RECORDING:
            elapsed = session.duration_seconds or 0
        else:
            now = now or datetime.now()
            elapsed = round((now - datetime.fromisoformat(session.started_at)).total_seconds())
        return recording_limit_status(elapsed, self._ledger.max_recording_seconds(session.account_id))

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    async def process(self, session_id: int) -> ExtractionOutcome:
        """Run extraction once for a stopped session.

        Collaborator errors and unusable payloads mark the session `failed`
        and come back as an unsuccessful outcome.

        Raises:
            InvalidTransition: the session is not `stopped` (already
                processed, still recording, or being processed elsewhere).
        """
        if self._extractor is None or self._intake is None:
            raise RuntimeError("RecordingService was built without an extractor")

        session = self._get(session_id)
        if not self._sessions.transition(session_id, (SessionStatus.STOPPED,), SessionStatus.PROCESSING):
            current = self._get(session_id)
            logger.error("Process rejected for session #%d in '%s'", session_id, current.status.value)
            raise InvalidTransition("session", current.status.value, "process")

        request = ExtractionRequest(
            session_id=session.id,
            account_id=session.account_id,
            audio_ref=session.audio_ref,
            transcript=session.transcript,
            title=session.setup.title,
            participants=[p.name for p in session.setup.participants],
            context=session.setup.context,
        )

        try:
            raw = await self._extractor.extract(request)
            result = self._intake.ingest(session.id, session.account_id, raw)
        except InvalidPayload as exc:
            return self._fail(session_id, str(exc))
        except Exception as exc:
            logger.error("Extraction collaborator failed for session #%d: %s", session_id, exc)
            return self._fail(session_id, f"extraction error: {exc}")

        transcript = raw.get("transcript") if isinstance(raw, dict) else None
        self._sessions.transition(
            session_id,
            (SessionStatus.PROCESSING,),
            SessionStatus.COMPLETE,
            transcript=transcript,
            transcript_quality=result.transcript_quality,
            extraction_method=result.method,
            aggregate_confidence=result.aggregate_confidence,
        )
        return ExtractionOutcome(session_id=session_id, success=True, intake=result)

    def _fail(self, session_id: int, reason: str) -> ExtractionOutcome:
        self._sessions.transition(
            session_id, (SessionStatus.PROCESSING,), SessionStatus.FAILED, error_message=reason,
        )
        logger.warning("Session #%d failed extraction: %s", session_id, reason)
        return ExtractionOutcome(
            session_id=session_id,
            success=False,
            error=ExtractionFailed(session_id, reason),
        )
