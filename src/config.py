"""
PACT Bridge — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram (push / in-app reminder delivery)
    TELEGRAM_BOT_TOKEN: str

    # LLM — provider-agnostic (gemini, anthropic, openai, cohere)
    LLM_PROVIDER: str = "gemini"
    LLM_MODEL: str = ""          # empty → smart default per provider
    LLM_API_KEY: str

    # Audio — OpenAI Whisper (transcription only)
    OPENAI_API_KEY: str = ""
    TRANSCRIPTION_LANGUAGE: str = "en"

    # SQLite
    DATABASE_PATH: str = "data/pact_bridge.db"

    TIMEZONE: str = "UTC"

    # Billing tier assigned to accounts the tier source has never seen
    DEFAULT_TIER: str = "free"

    # Review queue: how many pending actions are shown before "show more"
    REVIEW_PAGE_SIZE: int = 5

    # Reminders
    MORNING_REMINDER_HOUR: int = 8
    REMINDER_POLL_SECONDS: int = 60

    # Quota consumed on start is kept on cancel unless this is enabled
    REFUND_QUOTA_ON_CANCEL: bool = False

    # Daily retention purge and reminder repair, local hour in TIMEZONE
    MAINTENANCE_HOUR: int = 3

    # Telegram user ids allowed to change account tiers with /settier
    ADMIN_USER_IDS: list[int] = []

    LOG_LEVEL: str = "INFO"

    @field_validator(
        "REVIEW_PAGE_SIZE", "MORNING_REMINDER_HOUR", "REMINDER_POLL_SECONDS", "MAINTENANCE_HOUR",
        mode="before",
    )
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)

    @field_validator("REFUND_QUOTA_ON_CANCEL", mode="before")
    @classmethod
    def parse_flag(cls, v: str | bool) -> bool:
        if isinstance(v, bool):
            return v
        return str(v).strip().lower() in ("1", "true", "yes", "on")

    @field_validator("ADMIN_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")
    llm_api_key = os.getenv("LLM_API_KEY", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    if not llm_api_key or llm_api_key.startswith("your-"):
        print("ERROR: LLM_API_KEY is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "gemini"),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=llm_api_key,
        OPENAI_API_KEY=os.getenv("OPENAI_API_KEY", ""),
        TRANSCRIPTION_LANGUAGE=os.getenv("TRANSCRIPTION_LANGUAGE", "en"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/pact_bridge.db"),
        TIMEZONE=os.getenv("TIMEZONE", "UTC"),
        DEFAULT_TIER=os.getenv("DEFAULT_TIER", "free"),
        REVIEW_PAGE_SIZE=os.getenv("REVIEW_PAGE_SIZE", "5"),
        MORNING_REMINDER_HOUR=os.getenv("MORNING_REMINDER_HOUR", "8"),
        REMINDER_POLL_SECONDS=os.getenv("REMINDER_POLL_SECONDS", "60"),
        REFUND_QUOTA_ON_CANCEL=os.getenv("REFUND_QUOTA_ON_CANCEL", "false"),
        MAINTENANCE_HOUR=os.getenv("MAINTENANCE_HOUR", "3"),
        ADMIN_USER_IDS=os.getenv("ADMIN_USER_IDS", ""),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )


# Singleton — imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
