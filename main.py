"""
PACT Bridge — Entry Point.

    python main.py               start the Telegram bot (polling)
    python main.py maintenance   purge expired recordings, repair reminders, exit

Logging is configured here and nowhere else.
"""

import logging
import sys

from src.config import settings


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    # httpx logs every Telegram poll at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def run(argv: list[str]) -> int:
    configure_logging()
    from src.bot import telegram_bot

    command = argv[0] if argv else "bot"
    if command == "bot":
        telegram_bot.main()
        return 0
    if command == "maintenance":
        purged, created = telegram_bot.run_maintenance(telegram_bot.build_services())
        logging.getLogger("main").info(
            "Maintenance done: %d session(s) purged, %d reminder(s) repaired", purged, created,
        )
        return 0

    print(f"Unknown command: {command!r} (expected 'bot' or 'maintenance')", file=sys.stderr)
    return 2


def cli() -> None:
    sys.exit(run(sys.argv[1:]))


if __name__ == "__main__":
    cli()
