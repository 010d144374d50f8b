"""
PACT Bridge — Action Extractor.

Default ExtractionPort adapter. A recording becomes text through Whisper,
the configured LLM turns the text into promises and tasks, and when the
LLM is unavailable or answers with something that is not JSON, a
keyword scan over the transcript sentences produces a rule-based result
instead. The intake step caps the confidence of rule-based results.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import date

from src.core.llm import clean_json_response, complete
from src.core.transcriber import transcribe_audio
from src.ports.extraction_port import ExtractionRequest

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# LLM prompt — output must match the intake payload contract
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = """\
You analyze transcripts of real conversations for people who struggle to
follow through on what they say (ADHD, caregivers, busy families).
Today is {today}.

Extract every PROMISE (the speaker commits to someone: "I'll call you
tomorrow") and every TASK (something that needs doing: "we need to book the
dentist"). Ignore small talk.

Return ONLY a JSON object, no markdown, with this schema:
{{
  "actions": [
    {{
      "actionType": "promise" | "task",
      "text": "VERB-first description, e.g. Call mom about Sunday dinner",
      "priorityLevel": 1-10 (10 = most urgent),
      "confidenceScore": 0.0-1.0 (how sure you are this was really said),
      "dueContext": "time words from the conversation, e.g. by Friday",
      "relationshipImpact": "who is affected and how",
      "emotionalStakes": "why it matters emotionally",
      "intentBehind": "the underlying intention",
      "transcriptExcerpt": "the exact words that produced this action"
    }}
  ],
  "transcriptQuality": "high" | "medium" | "low"
}}

Rate transcriptQuality "low" when the transcript is garbled, truncated or
mostly inaudible. Return {{"actions": [], "transcriptQuality": "..."}} when
nothing actionable was said.
"""

_USER_TEMPLATE = """\
Conversation: {title}
Participants: {participants}
Context: {context}

Transcript:
{transcript}
"""

# ---------------------------------------------------------------------------
# Rule-based fallback
# ---------------------------------------------------------------------------

_PROMISE_MARKERS = ("i promise", "i will", "i'll", "i'm going to", "we will", "we'll")
_TASK_MARKERS = (
    "need to", "have to", "must", "should", "don't forget", "remember to",
    "let's", "got to",
)
_URGENT_MARKERS = ("today", "tonight", "asap", "urgent", "right away", "tomorrow")
_DUE_PATTERN = re.compile(
    r"\b(today|tonight|tomorrow|this week|next week|this weekend|"
    r"by (?:monday|tuesday|wednesday|thursday|friday|saturday|sunday)|"
    r"on (?:monday|tuesday|wednesday|thursday|friday|saturday|sunday))\b",
    re.IGNORECASE,
)
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")

_RULE_PROMISE_CONFIDENCE = 0.6
_RULE_TASK_CONFIDENCE = 0.5
_LOW_QUALITY_WORDS = 15
_HIGH_QUALITY_WORDS = 60


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(text) if s.strip()]


def estimate_quality(transcript: str) -> str:
    """Coarse transcript quality from its length in words."""
    words = len(transcript.split())
    if words < _LOW_QUALITY_WORDS:
        return "low"
    if words < _HIGH_QUALITY_WORDS:
        return "medium"
    return "high"


def rule_based_extract(transcript: str) -> dict:
    """Scan transcript sentences for commitment and obligation phrases."""
    actions = []
    for sentence in split_sentences(transcript):
        lowered = sentence.lower()
        if any(m in lowered for m in _PROMISE_MARKERS):
            action_type, confidence = "promise", _RULE_PROMISE_CONFIDENCE
        elif any(m in lowered for m in _TASK_MARKERS):
            action_type, confidence = "task", _RULE_TASK_CONFIDENCE
        else:
            continue

        due = _DUE_PATTERN.search(sentence)
        actions.append({
            "actionType": action_type,
            "text": sentence.rstrip(".!"),
            "priorityLevel": 7 if any(m in lowered for m in _URGENT_MARKERS) else 5,
            "confidenceScore": confidence,
            "dueContext": due.group(0) if due else "",
            "transcriptExcerpt": sentence,
        })

    logger.info("Rule-based extraction found %d action(s)", len(actions))
    return {
        "actions": actions,
        "transcriptQuality": estimate_quality(transcript),
        "method": "rule-based",
        "transcript": transcript,
    }


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class ActionExtractor:
    """ExtractionPort implementation backed by Whisper and the configured LLM."""

    async def extract(self, request: ExtractionRequest) -> dict | None:
        """Return the raw payload for a session, or None when there is nothing to read.

        Transcription errors propagate; LLM errors degrade to rule-based.
        """
        transcript = request.transcript
        if not transcript and request.audio_ref:
            transcript = await transcribe_audio(request.audio_ref)
        if not transcript or not transcript.strip():
            logger.warning("Session #%d has no transcript to extract from", request.session_id)
            return None

        data = await self._llm_extract(request, transcript)
        if data is None:
            logger.warning(
                "LLM extraction unusable for session #%d, falling back to rule-based",
                request.session_id,
            )
            return rule_based_extract(transcript)

        data["method"] = "ai"
        data.setdefault("transcriptQuality", estimate_quality(transcript))
        data["transcript"] = transcript
        return data

    async def _llm_extract(self, request: ExtractionRequest, transcript: str) -> dict | None:
        system_prompt = _SYSTEM_PROMPT.format(today=date.today().isoformat())
        user_message = _USER_TEMPLATE.format(
            title=request.title or "Untitled",
            participants=", ".join(request.participants) or "not specified",
            context=request.context or "none",
            transcript=transcript,
        )
        raw_text = ""
        try:
            raw_text = await complete(
                system=system_prompt, user_message=user_message, max_tokens=2048, json_mode=True,
            )
            raw_text = clean_json_response(raw_text)
            logger.debug("LLM raw response: %s", raw_text)
            data = json.loads(raw_text)
        except json.JSONDecodeError as exc:
            logger.error("Failed to parse LLM response as JSON: %s — raw: '%s'", exc, raw_text[:200])
            return None
        except Exception as exc:
            logger.error("LLM extraction call failed: %s", exc)
            return None

        if not isinstance(data, dict) or not isinstance(data.get("actions"), list):
            logger.warning("LLM returned unexpected shape: %s", type(data).__name__)
            return None
        return data
