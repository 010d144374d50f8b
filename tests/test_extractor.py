"""Tests for src.core.extractor — LLM extraction with rule-based fallback.

LLM and Whisper calls are patched at the extractor module's import site.
"""

import json
from unittest.mock import AsyncMock, patch

import pytest

from src.core.extraction_intake import ConfidenceBand, aggregate_confidence, confidence_band, parse_payload
from src.core.extractor import ActionExtractor, estimate_quality, rule_based_extract, split_sentences
from src.ports.extraction_port import ExtractionRequest

TRANSCRIPT = (
    "So about Sunday. I'll call mom tomorrow to confirm dinner. "
    "We need to book the dentist this week. The weather was nice."
)

LLM_JSON = json.dumps({
    "actions": [
        {"actionType": "promise", "text": "Call mom to confirm dinner", "priorityLevel": 7,
         "confidenceScore": 0.92, "dueContext": "tomorrow"},
    ],
    "transcriptQuality": "high",
})


def _request(**kwargs):
    defaults = dict(session_id=1, account_id=12345, transcript=TRANSCRIPT, title="Sunday plans")
    defaults.update(kwargs)
    return ExtractionRequest(**defaults)


class TestRuleBased:
    def test_split_sentences(self):
        assert split_sentences("One. Two!\nThree?") == ["One.", "Two!", "Three?"]

    def test_finds_promises_and_tasks(self):
        payload = rule_based_extract(TRANSCRIPT)
        types = [a["actionType"] for a in payload["actions"]]
        assert types == ["promise", "task"]
        assert payload["actions"][0]["dueContext"] == "tomorrow"
        assert payload["actions"][0]["priorityLevel"] == 7
        assert payload["actions"][1]["dueContext"] == "this week"
        assert payload["method"] == "rule-based"

    def test_fallback_payload_is_valid_and_capped(self):
        payload = parse_payload(rule_based_extract(TRANSCRIPT * 5))
        score = aggregate_confidence(
            [a.confidence_score for a in payload.actions], payload.transcript_quality, payload.method,
        )
        assert confidence_band(score) is not ConfidenceBand.READY

    @pytest.mark.parametrize("words,quality", [(5, "low"), (30, "medium"), (80, "high")])
    def test_quality_by_length(self, words, quality):
        assert estimate_quality(" ".join(["word"] * words)) == quality


class TestActionExtractor:
    @pytest.mark.asyncio
    async def test_llm_result_is_tagged_ai(self):
        with patch("src.core.extractor.complete", AsyncMock(return_value=f"```json\n{LLM_JSON}\n```")):
            payload = await ActionExtractor().extract(_request())
        assert payload["method"] == "ai"
        assert payload["transcript"] == TRANSCRIPT
        assert payload["actions"][0]["text"] == "Call mom to confirm dinner"

    @pytest.mark.asyncio
    async def test_unparseable_llm_falls_back(self):
        with patch("src.core.extractor.complete", AsyncMock(return_value="Sure! Here are your tasks:")):
            payload = await ActionExtractor().extract(_request())
        assert payload["method"] == "rule-based"
        assert len(payload["actions"]) == 2

    @pytest.mark.asyncio
    async def test_llm_error_falls_back(self):
        with patch("src.core.extractor.complete", AsyncMock(side_effect=RuntimeError("429"))):
            payload = await ActionExtractor().extract(_request())
        assert payload["method"] == "rule-based"

    @pytest.mark.asyncio
    async def test_wrong_shape_falls_back(self):
        with patch("src.core.extractor.complete", AsyncMock(return_value='["Call mom"]')):
            payload = await ActionExtractor().extract(_request())
        assert payload["method"] == "rule-based"

    @pytest.mark.asyncio
    async def test_transcribes_audio_when_no_transcript(self):
        with patch("src.core.extractor.transcribe_audio", AsyncMock(return_value=TRANSCRIPT)) as transcribe, \
             patch("src.core.extractor.complete", AsyncMock(return_value=LLM_JSON)):
            payload = await ActionExtractor().extract(_request(transcript=None, audio_ref="/tmp/a.ogg"))
        transcribe.assert_awaited_once_with("/tmp/a.ogg")
        assert payload["transcript"] == TRANSCRIPT

    @pytest.mark.asyncio
    async def test_transcription_error_propagates(self):
        with patch("src.core.extractor.transcribe_audio", AsyncMock(side_effect=RuntimeError("whisper down"))):
            with pytest.raises(RuntimeError):
                await ActionExtractor().extract(_request(transcript=None, audio_ref="/tmp/a.ogg"))

    @pytest.mark.asyncio
    async def test_nothing_to_read(self):
        assert await ActionExtractor().extract(_request(transcript="   ")) is None
