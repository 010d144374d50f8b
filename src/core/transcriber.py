"""
PACT Bridge — Audio Transcriber.

Turns a finished recording into text with OpenAI Whisper. The transcript
then goes to the LLM extractor (or the rule-based fallback).

OpenAI is used here for Whisper only; action extraction goes through the
provider configured in `src/core/llm.py`.
"""

from __future__ import annotations

import logging
from pathlib import Path

from openai import AsyncOpenAI

from src.config import settings

logger = logging.getLogger(__name__)

_client: AsyncOpenAI | None = None


def _get_client() -> AsyncOpenAI:
    global _client
    if _client is None:
        _client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
    return _client


async def transcribe_audio(file_path: str) -> str:
    """Return the Whisper transcript of a recording.

    An empty string means Whisper heard no speech; the extractor treats
    that as nothing to read. API and file errors propagate so the session
    is marked failed.
    """
    audio = Path(file_path)
    if not audio.is_file():
        raise FileNotFoundError(f"Recording audio not found: {file_path}")

    try:
        with audio.open("rb") as audio_file:
            response = await _get_client().audio.transcriptions.create(
                model="whisper-1",
                file=audio_file,
                language=settings.TRANSCRIPTION_LANGUAGE,
            )
    except Exception as exc:
        logger.error("Whisper transcription failed for %s: %s", audio.name, exc)
        raise

    text = (response.text or "").strip()
    if not text:
        logger.warning("Whisper returned no speech for %s", audio.name)
    else:
        logger.info("Transcribed %d chars from %s", len(text), audio.name)
    return text
