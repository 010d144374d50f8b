"""SQLite completion log — implements CompletionPort.

Persists completion events so streak and score jobs can read them later.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.data.db import CompletionDB
    from src.data.models import CompletionEvent

logger = logging.getLogger(__name__)


class CompletionLog:
    def __init__(self, completion_db: CompletionDB) -> None:
        self._db = completion_db

    def publish(self, event: CompletionEvent) -> None:
        self._db.add(event)
        logger.info(
            "Completion event: action #%d on %s (account %d)",
            event.action_id, event.completed_date, event.account_id,
        )
