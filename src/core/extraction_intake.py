"""
PACT Bridge — Extraction Result Intake.

Receives the raw payload returned by the extraction collaborator, validates
it, materializes pending Extracted Actions and scores the session.

Aggregate confidence (0-100):

    round(0.7 * mean(action confidence) * 100 + 0.3 * quality score)

with quality scores high=100, medium=75, low=40 (mean is 0 with no
actions), then capped: a low-quality transcript never scores above 69 and
a rule-based extraction never above 84. Never claim high confidence from a
degraded signal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from src.data.models import ActionType

if TYPE_CHECKING:
    from src.data.db import ActionDB
    from src.data.models import ExtractedAction

logger = logging.getLogger(__name__)

_ACTION_WEIGHT = 0.7
_QUALITY_WEIGHT = 0.3

_QUALITY_SCORES = {"high": 100, "medium": 75, "low": 40}

LOW_QUALITY_CAP = 69
RULE_BASED_CAP = 84

READY_THRESHOLD = 85
REVIEW_THRESHOLD = 70


# ---------------------------------------------------------------------------
# Payload contract (camelCase from the collaborator, snake_case accepted too)
# ---------------------------------------------------------------------------


class RawAction(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    action_type: str = "task"
    text: str = Field(min_length=1)
    priority_level: int = 5
    confidence_score: float = 0.5
    due_context: str = ""
    relationship_impact: str = ""
    emotional_stakes: str = ""
    intent_behind: str = ""
    transcript_excerpt: str = ""

    @field_validator("action_type", mode="before")
    @classmethod
    def normalize_type(cls, v: str | None) -> str:
        # Anything that is not an explicit promise is tracked as a task
        if isinstance(v, str) and v.strip().lower() == ActionType.PROMISE.value:
            return ActionType.PROMISE.value
        return ActionType.TASK.value

    @field_validator("text")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("action text is blank")
        return v

    @field_validator("priority_level", mode="before")
    @classmethod
    def clamp_priority(cls, v: int | float | str | None) -> int:
        if v is None:
            return 5
        return max(1, min(10, int(float(v))))

    @field_validator("confidence_score", mode="before")
    @classmethod
    def clamp_confidence(cls, v: float | str | None) -> float:
        if v is None:
            return 0.5
        return max(0.0, min(1.0, float(v)))

    @field_validator(
        "due_context", "relationship_impact", "emotional_stakes",
        "intent_behind", "transcript_excerpt", mode="before",
    )
    @classmethod
    def none_to_empty(cls, v: str | None) -> str:
        return v or ""


class ExtractionPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    actions: list[RawAction] = Field(default_factory=list)
    transcript_quality: Literal["high", "medium", "low"]
    method: Literal["ai", "rule-based"]


class InvalidPayload(ValueError):
    """The collaborator's payload is missing, empty or malformed."""


def _valid_actions(items: list) -> list[RawAction]:
    kept = []
    for index, item in enumerate(items):
        try:
            kept.append(RawAction.model_validate(item))
        except ValidationError as exc:
            logger.warning("Dropping extracted item %d: %d error(s)", index, exc.error_count())
    return kept


def parse_payload(raw: dict | None) -> ExtractionPayload:
    """Validate a raw collaborator payload.

    Individual action items that fail validation (blank text, wrong types)
    are dropped with a warning; the rest of the payload is kept.

    Raises:
        InvalidPayload: if `raw` is None/empty or its overall shape does not
            match the contract.
    """
    if not raw:
        raise InvalidPayload("empty extraction response")
    if not isinstance(raw, dict):
        raise InvalidPayload(f"expected an object, got {type(raw).__name__}")
    if isinstance(raw.get("actions"), list):
        raw = {**raw, "actions": _valid_actions(raw["actions"])}
    try:
        return ExtractionPayload.model_validate(raw)
    except ValidationError as exc:
        raise InvalidPayload(f"malformed extraction response: {exc.error_count()} error(s)") from exc


# ---------------------------------------------------------------------------
# Confidence
# ---------------------------------------------------------------------------


class ConfidenceBand(Enum):
    READY = "ready"
    REVIEW = "review"
    RECHECK = "recheck"


_BAND_MESSAGES = {
    ConfidenceBand.READY: "High confidence. These actions are ready to schedule.",
    ConfidenceBand.REVIEW: "Good confidence. Review the actions before scheduling.",
    ConfidenceBand.RECHECK: "Low confidence. Review carefully and consider re-recording.",
}


def aggregate_confidence(
    action_scores: list[float],
    transcript_quality: str,
    method: str,
) -> int:
    """Combine per-action confidences (0-1) and transcript quality into 0-100."""
    mean = sum(action_scores) / len(action_scores) if action_scores else 0.0
    score = round(
        _ACTION_WEIGHT * mean * 100 + _QUALITY_WEIGHT * _QUALITY_SCORES[transcript_quality]
    )
    if transcript_quality == "low":
        score = min(score, LOW_QUALITY_CAP)
    if method == "rule-based":
        score = min(score, RULE_BASED_CAP)
    return max(0, min(100, score))


def confidence_band(score: int) -> ConfidenceBand:
    if score >= READY_THRESHOLD:
        return ConfidenceBand.READY
    if score >= REVIEW_THRESHOLD:
        return ConfidenceBand.REVIEW
    return ConfidenceBand.RECHECK


def band_message(score: int) -> str:
    return _BAND_MESSAGES[confidence_band(score)]


# ---------------------------------------------------------------------------
# Intake
# ---------------------------------------------------------------------------


@dataclass
class IntakeResult:
    actions: list[ExtractedAction] = field(default_factory=list)
    aggregate_confidence: int = 0
    band: ConfidenceBand = ConfidenceBand.RECHECK
    transcript_quality: str = "low"
    method: str = "rule-based"

    @property
    def message(self) -> str:
        return _BAND_MESSAGES[self.band]


class ExtractionIntake:
    """Turns a validated payload into stored pending actions plus a score."""

    def __init__(self, action_db: ActionDB) -> None:
        self._action_db = action_db

    def ingest(self, session_id: int, account_id: int, raw: dict | None) -> IntakeResult:
        """Validate, store and score one extraction result.

        Raises:
            InvalidPayload: nothing is stored when the payload is unusable.
        """
        payload = parse_payload(raw)

        items = [
            {
                "action_type": ActionType(a.action_type).value,
                "text": a.text,
                "priority_level": a.priority_level,
                "confidence_score": a.confidence_score,
                "due_context": a.due_context,
                "relationship_impact": a.relationship_impact,
                "emotional_stakes": a.emotional_stakes,
                "intent_behind": a.intent_behind,
                "transcript_excerpt": a.transcript_excerpt,
            }
            for a in payload.actions
        ]
        stored = self._action_db.add_many(session_id, account_id, items) if items else []

        score = aggregate_confidence(
            [a.confidence_score for a in payload.actions],
            payload.transcript_quality,
            payload.method,
        )
        band = confidence_band(score)
        logger.info(
            "Session #%d: %d action(s), quality=%s, method=%s, confidence=%d (%s)",
            session_id, len(stored), payload.transcript_quality, payload.method,
            score, band.value,
        )
        return IntakeResult(
            actions=stored,
            aggregate_confidence=score,
            band=band,
            transcript_quality=payload.transcript_quality,
            method=payload.method,
        )
