"""
PACT Bridge — Action Comments.

Short notes an account leaves on its own actions ("asked her about the
date, waiting to hear back"). Each comment counts against the tier's
monthly comment allowance; the check and the increment are one guarded
update in the ledger.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.core.errors import QuotaExceeded

if TYPE_CHECKING:
    from src.core.usage_ledger import UsageLedger
    from src.data.db import ActionDB, CommentDB
    from src.data.models import ActionComment

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 1000


class CommentService:
    def __init__(self, comment_db: CommentDB, action_db: ActionDB, ledger: UsageLedger) -> None:
        self._comments = comment_db
        self._actions = action_db
        self._ledger = ledger

    def _check_owner(self, action_id: int, account_id: int) -> None:
        action = self._actions.get(action_id)
        if action is None or action.account_id != account_id:
            raise ValueError(f"Action {action_id} not found")

    def add(self, action_id: int, account_id: int, body: str) -> ActionComment:
        """Attach a note to one of the account's actions.

        Raises:
            ValueError: unknown or foreign action, or blank/oversized text.
            QuotaExceeded: the tier's comment allowance is used up.
        """
        body = (body or "").strip()
        if not body:
            raise ValueError("Comment is empty")
        if len(body) > MAX_COMMENT_LENGTH:
            raise ValueError(f"Comment is longer than {MAX_COMMENT_LENGTH} characters")
        self._check_owner(action_id, account_id)

        if not self._ledger.record_comment(account_id):
            raise QuotaExceeded(
                account_id, self._ledger.comment_limit(account_id), resource="comment",
            )

        comment = self._comments.add(action_id, account_id, body)
        logger.info("Comment #%d added to action #%d", comment.id, action_id)
        return comment

    def list_for_action(self, action_id: int, account_id: int) -> list[ActionComment]:
        self._check_owner(action_id, account_id)
        return self._comments.list_for_action(action_id)
