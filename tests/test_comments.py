"""Tests for src.core.comments — notes on actions, ownership and comment quota."""

import pytest

from src.core.comments import MAX_COMMENT_LENGTH, CommentService
from src.core.errors import QuotaExceeded

ACCOUNT = 12345
STRANGER = 999


@pytest.fixture
def comments(comment_db, action_db, ledger):
    return CommentService(comment_db, action_db, ledger)


class TestAddComment:
    def test_adds_and_counts(self, comments, make_actions, ledger):
        action = make_actions({"text": "Call mom"})[0]

        comment = comments.add(action.id, ACCOUNT, "  asked about Sunday  ")

        assert comment.body == "asked about Sunday"
        assert [c.body for c in comments.list_for_action(action.id, ACCOUNT)] == ["asked about Sunday"]
        assert ledger.current_record(ACCOUNT).comment_count == 1

    def test_blank_comment_rejected_without_counting(self, comments, make_actions, ledger):
        action = make_actions({"text": "Call mom"})[0]
        with pytest.raises(ValueError):
            comments.add(action.id, ACCOUNT, "   ")
        assert ledger.current_record(ACCOUNT).comment_count == 0

    def test_oversized_comment_rejected(self, comments, make_actions):
        action = make_actions({"text": "Call mom"})[0]
        with pytest.raises(ValueError):
            comments.add(action.id, ACCOUNT, "x" * (MAX_COMMENT_LENGTH + 1))

    def test_other_accounts_action_is_not_found(self, comments, make_actions, comment_db, ledger):
        action = make_actions({"text": "Call mom"})[0]

        with pytest.raises(ValueError, match="not found"):
            comments.add(action.id, STRANGER, "mine now")
        with pytest.raises(ValueError, match="not found"):
            comments.list_for_action(action.id, STRANGER)

        assert comment_db.list_for_action(action.id) == []
        assert ledger.current_record(STRANGER).comment_count == 0

    def test_free_tier_comment_limit(self, comments, make_actions):
        action = make_actions({"text": "Call mom"})[0]
        for i in range(10):
            comments.add(action.id, ACCOUNT, f"note {i}")

        with pytest.raises(QuotaExceeded) as excinfo:
            comments.add(action.id, ACCOUNT, "one too many")

        assert excinfo.value.resource == "comment"
        assert excinfo.value.limit == 10
        assert len(comments.list_for_action(action.id, ACCOUNT)) == 10
