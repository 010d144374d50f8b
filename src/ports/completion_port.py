"""Completion port — subscribers to "action completed" events.

Streak and promise-score accounting live downstream of this port.
"""

from __future__ import annotations

from typing import Protocol

from src.data.models import CompletionEvent


class CompletionPort(Protocol):
    def publish(self, event: CompletionEvent) -> None: ...
