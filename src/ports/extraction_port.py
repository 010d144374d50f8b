"""Extraction port — the speech-to-actions collaborator.

Core modules treat extraction as a black box: they hand over an audio or
transcript reference plus session metadata and receive a raw payload shaped
like

    {
        "actions": [{"actionType": "promise", "text": "...", ...}],
        "transcriptQuality": "high" | "medium" | "low",
        "method": "ai" | "rule-based"
    }

or None when nothing usable came back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


@dataclass
class ExtractionRequest:
    session_id: int
    account_id: int
    audio_ref: str | None = None
    transcript: str | None = None
    title: str = ""
    participants: list[str] = field(default_factory=list)
    context: str = ""


class ExtractionPort(Protocol):
    """Abstract extraction interface used by the recording service."""

    async def extract(self, request: ExtractionRequest) -> dict | None: ...
