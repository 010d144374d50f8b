"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides repositories backed by one temp SQLite file per test.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("LLM_API_KEY", "fake-llm-key-for-tests")
os.environ.setdefault("LLM_PROVIDER", "gemini")
os.environ.setdefault("OPENAI_API_KEY", "fake-openai-key-for-tests")
os.environ.setdefault("DATABASE_PATH", ":memory:")

import pytest

ACCOUNT = 12345


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_pact.db")


@pytest.fixture
def usage_db(tmp_db_path):
    from src.data.db import UsageDB
    return UsageDB(db_path=tmp_db_path)


@pytest.fixture
def session_db(tmp_db_path):
    from src.data.db import SessionDB
    return SessionDB(db_path=tmp_db_path)


@pytest.fixture
def action_db(tmp_db_path):
    from src.data.db import ActionDB
    return ActionDB(db_path=tmp_db_path)


@pytest.fixture
def schedule_db(tmp_db_path):
    from src.data.db import ScheduleDB
    return ScheduleDB(db_path=tmp_db_path)


@pytest.fixture
def reminder_db(tmp_db_path):
    from src.data.db import ReminderDB
    return ReminderDB(db_path=tmp_db_path)


@pytest.fixture
def completion_db(tmp_db_path):
    from src.data.db import CompletionDB
    return CompletionDB(db_path=tmp_db_path)


@pytest.fixture
def comment_db(tmp_db_path):
    from src.data.db import CommentDB
    return CommentDB(db_path=tmp_db_path)


@pytest.fixture
def tiers():
    """Tier catalog where every account starts on the free plan."""
    from src.adapters.tier_catalog import TierCatalog
    return TierCatalog(default_tier="free")


@pytest.fixture
def ledger(usage_db, tiers, session_db):
    from src.core.usage_ledger import UsageLedger
    return UsageLedger(usage_db, tiers, session_db)


@pytest.fixture
def reminder_service(reminder_db):
    from src.core.reminders import ReminderService
    return ReminderService(reminder_db, morning_hour=8)


@pytest.fixture
def scheduler(action_db, schedule_db, reminder_service):
    from src.core.action_scheduler import ActionScheduler
    return ActionScheduler(action_db, schedule_db, reminder_service)


@pytest.fixture
def make_actions(session_db, action_db):
    """Factory: store pending actions under a fresh completed session."""
    from src.data.models import SessionSetup, SessionStatus

    def _make(*items: dict, account_id: int = ACCOUNT):
        session = session_db.create(account_id, SessionSetup(title="Sunday call"), SessionStatus.COMPLETE)
        rows = []
        for item in items:
            row = {
                "action_type": "task",
                "priority_level": 5,
                "confidence_score": 0.8,
            }
            row.update(item)
            rows.append(row)
        return action_db.add_many(session.id, account_id, rows)

    return _make
