"""
PACT Bridge — Telegram Bot.

Telegram is the capture and review surface: a voice note becomes a
recording session, extracted actions come back as buttons to confirm or
reject, and the job queue delivers due reminders to the same chat. A
daily maintenance job purges recordings past their retention window and
re-attaches default reminders that failed to save.

The chat id is the account id.
"""

from __future__ import annotations

import logging
import sqlite3
import tempfile
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from datetime import time as dt_time
from pathlib import Path
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from src.config import settings
from src.core.errors import InvalidTransition, PactBridgeError, QuotaExceeded
from src.data.models import UNLIMITED, Participant, ReminderTime, SessionSetup

if TYPE_CHECKING:
    from src.adapters.tier_catalog import TierCatalog
    from src.core.action_scheduler import ActionScheduler
    from src.core.comments import CommentService
    from src.core.confirmation import ConfirmationWorkflow
    from src.core.recording_service import RecordingService
    from src.core.reminders import ReminderService
    from src.core.usage_ledger import UsageLedger
    from src.data.db import ReminderDB, ScheduleDB
    from src.data.models import ExtractedAction
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


@dataclass
class Services:
    """Everything the handlers need, built once per application."""

    ledger: UsageLedger
    recording: RecordingService
    workflow: ConfirmationWorkflow
    scheduler: ActionScheduler
    reminders: ReminderService
    schedule_db: ScheduleDB
    reminder_db: ReminderDB
    comments: CommentService
    tiers: TierCatalog


def build_services(db_path: str | None = None) -> Services:
    from src.adapters.completion_log import CompletionLog
    from src.adapters.tier_catalog import TierCatalog
    from src.core.action_scheduler import ActionScheduler
    from src.core.comments import CommentService
    from src.core.confirmation import ConfirmationWorkflow
    from src.core.extraction_intake import ExtractionIntake
    from src.core.extractor import ActionExtractor
    from src.core.recording_service import RecordingService
    from src.core.reminders import ReminderService
    from src.core.usage_ledger import UsageLedger
    from src.data.db import (
        ActionDB,
        CommentDB,
        CompletionDB,
        ReminderDB,
        ScheduleDB,
        SessionDB,
        TierDB,
        UsageDB,
    )

    session_db = SessionDB(db_path)
    action_db = ActionDB(db_path)
    schedule_db = ScheduleDB(db_path)
    reminder_db = ReminderDB(db_path)

    tiers = TierCatalog(store=TierDB(db_path))
    ledger = UsageLedger(UsageDB(db_path), tiers, session_db)
    reminders = ReminderService(reminder_db)
    scheduler = ActionScheduler(action_db, schedule_db, reminders)
    return Services(
        ledger=ledger,
        recording=RecordingService(
            session_db, ledger, ActionExtractor(), ExtractionIntake(action_db),
        ),
        workflow=ConfirmationWorkflow(
            action_db, scheduler, schedule_db, CompletionLog(CompletionDB(db_path)),
        ),
        scheduler=scheduler,
        reminders=reminders,
        schedule_db=schedule_db,
        reminder_db=reminder_db,
        comments=CommentService(CommentDB(db_path), action_db, ledger),
        tiers=tiers,
    )


def _services(context: ContextTypes.DEFAULT_TYPE) -> Services:
    return context.bot_data["services"]


def _int_arg(context: ContextTypes.DEFAULT_TYPE, index: int = 0) -> int | None:
    try:
        return int(context.args[index])
    except (IndexError, TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Review rendering
# ---------------------------------------------------------------------------


def _action_line(action: ExtractedAction) -> str:
    icon = "🤝" if action.action_type.value == "promise" else "📝"
    due = f" ({action.due_context})" if action.due_context else ""
    return f"{icon} #{action.id} {action.text}{due} · P{action.priority_level}"


def _action_keyboard(action_id: int) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[
        InlineKeyboardButton("✅ Confirm", callback_data=f"act:confirm:{action_id}"),
        InlineKeyboardButton("❌ Reject", callback_data=f"act:reject:{action_id}"),
    ]])


async def _send_review(chat, services: Services, account_id: int, limit: int | None = None) -> None:
    page = services.workflow.review_queue(account_id, limit)
    if page.total == 0:
        await chat.send_message("Nothing waiting for review. 🎉")
        return

    for action in page.visible:
        await chat.send_message(
            _action_line(action), reply_markup=_action_keyboard(action.id),
        )
    if page.has_more:
        await chat.send_message(
            f"{len(page.hidden)} more action(s) waiting.",
            reply_markup=InlineKeyboardMarkup([[
                InlineKeyboardButton("Show more", callback_data=f"review:{page.total}"),
            ]]),
        )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — welcome message."""
    await update.message.reply_text(
        "Welcome to *PACT Bridge*!\n\n"
        "Record a conversation as a voice note and I'll pull out the promises "
        "and tasks in it, put them on your calendar and remind you.\n\n"
        "Type /help for the full command list.",
        parse_mode="Markdown",
    )


async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "*Available commands:*\n"
        "/record <title> [| names] — Describe the next voice note\n"
        "/review — Pending actions to confirm or reject\n"
        "/schedule <id> [YYYY-MM-DD] [HH:MM] — Schedule a confirmed action\n"
        "/scheduleall — Schedule every confirmed action\n"
        "/today — Today's daily actions\n"
        "/done <id> — Mark a scheduled action complete\n"
        "/snooze <reminder id> <minutes> — Remind me again later\n"
        "/dismiss <reminder id> — Drop a reminder before it fires\n"
        "/remind <id> <5m|15m|30m|1h|1d|morning> [methods] — Extra reminder\n"
        "/note <id> [text] — Add a note to an action, or list its notes\n"
        "/usage — This month's usage and plan limits\n"
        "/help — Show this message",
        parse_mode="Markdown",
    )


async def cmd_record(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /record — remember the setup for the next voice note."""
    text = " ".join(context.args or []).strip()
    if not text:
        await update.message.reply_text("Usage: /record Dinner with mom | Mom, Dad")
        return

    title, _, names = text.partition("|")
    participants = [Participant(name=n.strip()) for n in names.split(",") if n.strip()]
    context.user_data["setup"] = SessionSetup(title=title.strip(), participants=participants)

    services = _services(context)
    if not services.ledger.can_record(update.effective_chat.id):
        await update.message.reply_text(
            "You've used all recordings on your plan this month. Upgrade to keep capturing."
        )
        return
    await update.message.reply_text(f"🎙 Ready. Send a voice note for *{title.strip()}*.", parse_mode="Markdown")


async def cmd_review(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /review — show the pending review queue."""
    await _send_review(update.effective_chat, _services(context), update.effective_chat.id)


async def cmd_schedule(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /schedule <id> [date] [time]."""
    action_id = _int_arg(context)
    if action_id is None:
        await update.message.reply_text("Usage: /schedule <action_id> [YYYY-MM-DD] [HH:MM]")
        return
    args = context.args[1:]
    target_date = args[0] if len(args) > 0 else None
    target_time = args[1] if len(args) > 1 else None

    try:
        event, daily = _services(context).workflow.schedule(
            action_id, target_date, target_time, account_id=update.effective_chat.id,
        )
    except InvalidTransition as exc:
        await update.message.reply_text(f"Can't schedule that one: {exc}")
        return
    except (PactBridgeError, ValueError) as exc:
        logger.error("/schedule error: %s", exc)
        await update.message.reply_text("Couldn't schedule it. Nothing was changed, please try again.")
        return

    await update.message.reply_text(
        f"📅 *{event.title}* on {event.date} at {event.time} "
        f"({daily.duration_minutes} min, {daily.focus_area.value})",
        parse_mode="Markdown",
    )


async def cmd_schedule_all(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /scheduleall — schedule every confirmed action."""
    count = _services(context).scheduler.schedule_all_confirmed(update.effective_chat.id)
    await update.message.reply_text(f"📅 Scheduled {count} action(s).")


async def cmd_today(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /today — list today's daily actions."""
    services = _services(context)
    dailies = services.schedule_db.list_daily_actions(update.effective_chat.id, date.today().isoformat())
    if not dailies:
        await update.message.reply_text("Nothing scheduled for today.")
        return

    lines = ["*Today:*\n"]
    for d in dailies:
        mark = "✅" if d.status == "completed" else "•"
        lines.append(f"{mark} {d.start_time} `{d.action_id}` {d.title} ({d.duration_minutes} min)")
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


async def cmd_done(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /done <id> — complete a scheduled action."""
    action_id = _int_arg(context)
    if action_id is None:
        await update.message.reply_text("Usage: /done <action_id>\nUse /today to see IDs.")
        return
    try:
        action = _services(context).workflow.complete(action_id, account_id=update.effective_chat.id)
    except (InvalidTransition, ValueError) as exc:
        await update.message.reply_text(f"Couldn't complete {action_id}: {exc}")
        return
    await update.message.reply_text(f"✅ Done: *{action.text}*", parse_mode="Markdown")


async def cmd_snooze(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /snooze <reminder_id> <minutes>."""
    reminder_id = _int_arg(context, 0)
    minutes = _int_arg(context, 1) or 10
    if reminder_id is None:
        await update.message.reply_text("Usage: /snooze <reminder_id> [minutes]")
        return
    try:
        reminder = _services(context).reminders.snooze(
            reminder_id, minutes, account_id=update.effective_chat.id,
        )
    except (InvalidTransition, ValueError) as exc:
        await update.message.reply_text(f"Couldn't snooze: {exc}")
        return
    await update.message.reply_text(f"💤 I'll remind you again at {reminder.remind_at[11:16]}.")


async def cmd_dismiss(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /dismiss <reminder_id>."""
    reminder_id = _int_arg(context)
    if reminder_id is None:
        await update.message.reply_text("Usage: /dismiss <reminder_id>")
        return
    try:
        _services(context).reminders.dismiss(reminder_id, account_id=update.effective_chat.id)
    except (InvalidTransition, ValueError) as exc:
        await update.message.reply_text(f"Couldn't dismiss: {exc}")
        return
    await update.message.reply_text("🔕 Reminder dismissed.")


_REMINDER_KINDS = {
    "5m": ReminderTime.FIVE_MINUTES_BEFORE,
    "15m": ReminderTime.FIFTEEN_MINUTES_BEFORE,
    "30m": ReminderTime.THIRTY_MINUTES_BEFORE,
    "1h": ReminderTime.ONE_HOUR_BEFORE,
    "1d": ReminderTime.ONE_DAY_BEFORE,
    "morning": ReminderTime.MORNING_OF,
}


async def cmd_remind(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /remind <action_id> <5m|15m|30m|1h|1d|morning> [push,email,in_app]."""
    action_id = _int_arg(context)
    kind = _REMINDER_KINDS.get((context.args[1] if len(context.args or []) > 1 else "").lower())
    if action_id is None or kind is None:
        await update.message.reply_text(
            "Usage: /remind <action_id> <5m|15m|30m|1h|1d|morning> [push,email,in_app]"
        )
        return
    methods = context.args[2].split(",") if len(context.args) > 2 else ["push"]

    services = _services(context)
    event = services.schedule_db.get_event_for_action(action_id)
    if event is None or event.account_id != update.effective_chat.id:
        await update.message.reply_text(f"No scheduled event for action {action_id}.")
        return
    try:
        reminder = services.reminders.add_reminder(event, kind, [m.strip() for m in methods])
    except ValueError as exc:
        await update.message.reply_text(f"Couldn't add that reminder: {exc}")
        return
    await update.message.reply_text(
        f"⏰ Reminder #{reminder.id} set for *{event.title}* ({kind.value.replace('_', ' ')})",
        parse_mode="Markdown",
    )


async def cmd_note(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /note <action_id> [text] — add a note, or list notes without text."""
    action_id = _int_arg(context)
    if action_id is None:
        await update.message.reply_text("Usage: /note <action_id> <text>")
        return
    account_id = update.effective_chat.id
    comments = _services(context).comments
    body = " ".join(context.args[1:]).strip()

    try:
        if not body:
            notes = comments.list_for_action(action_id, account_id)
            if not notes:
                await update.message.reply_text(f"No notes on action {action_id} yet.")
                return
            lines = [f"📝 {n.created_at[:10]} {n.body}" for n in notes]
            await update.message.reply_text("\n".join(lines))
            return
        comments.add(action_id, account_id, body)
    except QuotaExceeded as exc:
        await update.message.reply_text(
            f"You've used all {exc.limit} notes on your plan this month."
        )
        return
    except ValueError as exc:
        await update.message.reply_text(f"Couldn't save that note: {exc}")
        return
    await update.message.reply_text("📝 Note saved.")


async def cmd_settier(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /settier <account_id> <tier> — admins only, others are ignored."""
    user = update.effective_user
    if user is None or user.id not in settings.ADMIN_USER_IDS:
        uid = user.id if user else "unknown"
        logger.warning("Unauthorized /settier attempt from user_id=%s", uid)
        return

    account_id = _int_arg(context)
    if account_id is None or len(context.args) < 2:
        await update.message.reply_text("Usage: /settier <account_id> <free|premium|family>")
        return
    tier = context.args[1].lower()
    try:
        _services(context).tiers.set_tier(account_id, tier)
    except ValueError as exc:
        await update.message.reply_text(str(exc))
        return
    await update.message.reply_text(f"Account {account_id} is now on *{tier}*.", parse_mode="Markdown")


async def cmd_usage(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /usage — this period's counters against the plan."""
    ledger = _services(context).ledger
    record = ledger.current_record(update.effective_chat.id)
    limit = ledger.recording_limit(update.effective_chat.id)
    limit_text = "unlimited" if limit == UNLIMITED else str(limit)
    comment_limit = ledger.comment_limit(update.effective_chat.id)
    comment_text = "unlimited" if comment_limit == UNLIMITED else str(comment_limit)
    await update.message.reply_text(
        f"*Plan:* {record.tier}\n"
        f"Recordings: {record.recording_count} / {limit_text}\n"
        f"Minutes recorded: {record.recording_duration_minutes}\n"
        f"Notes: {record.comment_count} / {comment_text}\n"
        f"Period: {record.period_start} – {record.period_end}",
        parse_mode="Markdown",
    )


# ---------------------------------------------------------------------------
# Callbacks
# ---------------------------------------------------------------------------


async def _handle_action_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Confirm / reject buttons under a pending action."""
    query = update.callback_query
    await query.answer()
    _, operation, raw_id = query.data.split(":")
    workflow = _services(context).workflow
    account_id = update.effective_chat.id

    try:
        if operation == "confirm":
            action = workflow.confirm(int(raw_id), account_id=account_id)
            await query.edit_message_text(
                f"✅ {action.text}\nSchedule it with /schedule {action.id}",
            )
        else:
            action = workflow.reject(int(raw_id), account_id=account_id)
            await query.edit_message_text(f"❌ {action.text}")
    except (InvalidTransition, ValueError) as exc:
        await query.edit_message_text(f"Already handled: {exc}")


async def _handle_review_more(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    limit = int(query.data.split(":")[1])
    await _send_review(update.effective_chat, _services(context), update.effective_chat.id, limit)


# ---------------------------------------------------------------------------
# Capture: voice note -> session -> extraction
# ---------------------------------------------------------------------------


async def handle_voice(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle voice messages — one voice note is one recording session."""
    services = _services(context)
    account_id = update.effective_chat.id
    voice = update.message.voice
    setup = context.user_data.pop("setup", None) or SessionSetup(title="Voice note")

    if not services.recording.within_length_limit(account_id, voice.duration):
        max_minutes = services.ledger.max_recording_seconds(account_id) // 60
        await update.message.reply_text(
            f"That voice note is longer than your plan allows ({max_minutes} min per recording). "
            "Split it up or upgrade to record longer conversations."
        )
        return

    received = datetime.now()
    try:
        session = services.recording.start(
            account_id, setup, now=received - timedelta(seconds=voice.duration),
        )
    except QuotaExceeded:
        await update.message.reply_text(
            "You've used all recordings on your plan this month. Upgrade to keep capturing."
        )
        return

    tmp_path: str | None = None
    try:
        voice_file = await context.bot.get_file(voice.file_id)
        with tempfile.NamedTemporaryFile(suffix=".ogg", delete=False) as tmp:
            tmp_path = tmp.name
        await voice_file.download_to_drive(tmp_path)

        services.recording.stop(session.id, audio_ref=tmp_path, now=received)
        await update.message.reply_text("🎧 Got it, pulling out your promises and tasks...")
        outcome = await services.recording.process(session.id)
    except Exception as exc:
        logger.error("Voice capture error for session #%d: %s", session.id, exc)
        services.recording.abandon(session.id, f"capture error: {exc}")
        await update.message.reply_text("Sorry, I couldn't process that recording. Please try again.")
        return
    finally:
        if tmp_path:
            try:
                Path(tmp_path).unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Could not remove temp audio %s: %s", tmp_path, exc)

    if not outcome.success:
        await update.message.reply_text(
            "I couldn't find anything usable in that recording. "
            "Try again somewhere quieter, or speak a little closer to the mic."
        )
        return

    intake = outcome.intake
    await update.message.reply_text(
        f"Found {len(intake.actions)} action(s). Confidence {intake.aggregate_confidence}/100.\n"
        f"{intake.message}"
    )
    if intake.actions:
        await _send_review(update.effective_chat, services, account_id)


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(services: Services | None = None) -> Application:
    """Build and configure the Telegram Application with all handlers."""
    from src.adapters.telegram_notifier import TelegramNotifier

    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()

    services = services or build_services()
    notifier = TelegramNotifier(app.bot)
    app.bot_data["services"] = services
    app.bot_data["notifier"] = notifier

    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("record", cmd_record))
    app.add_handler(CommandHandler("review", cmd_review))
    app.add_handler(CommandHandler("schedule", cmd_schedule))
    app.add_handler(CommandHandler("scheduleall", cmd_schedule_all))
    app.add_handler(CommandHandler("today", cmd_today))
    app.add_handler(CommandHandler("done", cmd_done))
    app.add_handler(CommandHandler("snooze", cmd_snooze))
    app.add_handler(CommandHandler("dismiss", cmd_dismiss))
    app.add_handler(CommandHandler("remind", cmd_remind))
    app.add_handler(CommandHandler("note", cmd_note))
    app.add_handler(CommandHandler("settier", cmd_settier))
    app.add_handler(CommandHandler("usage", cmd_usage))
    app.add_handler(CallbackQueryHandler(_handle_action_callback, pattern=r"^act:(confirm|reject):\d+$"))
    app.add_handler(CallbackQueryHandler(_handle_review_more, pattern=r"^review:\d+$"))
    app.add_handler(MessageHandler(filters.VOICE, handle_voice))

    _setup_reminder_dispatch(app, services, notifier)
    _setup_maintenance(app, services)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _setup_reminder_dispatch(app: Application, services: Services, notifier: NotificationPort) -> None:
    """Register the repeating job that delivers due reminders."""
    from src.core.reminder_dispatch import send_due_reminders

    channels = {"push": notifier, "in_app": notifier}

    async def _reminder_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        await send_due_reminders(
            services.reminder_db, services.schedule_db, services.reminders, channels,
        )

    app.job_queue.run_repeating(
        _reminder_job_callback,
        interval=settings.REMINDER_POLL_SECONDS,
        first=settings.REMINDER_POLL_SECONDS,
        name="reminder_dispatch",
    )
    logger.info("Reminder dispatch every %ds", settings.REMINDER_POLL_SECONDS)


def run_maintenance(services: Services, today: date | None = None) -> tuple[int, int]:
    """Purge expired recordings and repair missing default reminders.

    Returns (sessions purged, reminders created). A storage failure in one
    step is logged and does not stop the other.
    """
    today = today or date.today()
    purged = created = 0
    try:
        purged = services.ledger.purge_all_expired(today)
    except sqlite3.Error as exc:
        logger.error("Retention purge failed: %s", exc)
    try:
        upcoming = services.schedule_db.list_upcoming_events(today.isoformat())
        created = services.reminders.backfill_defaults(upcoming)
    except sqlite3.Error as exc:
        logger.error("Reminder backfill failed: %s", exc)
    return purged, created


def _setup_maintenance(app: Application, services: Services) -> None:
    """Register the daily maintenance job."""
    tz = ZoneInfo(settings.TIMEZONE)
    run_at = dt_time(hour=settings.MAINTENANCE_HOUR, minute=0, tzinfo=tz)

    async def _maintenance_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        run_maintenance(services)

    app.job_queue.run_daily(_maintenance_job_callback, time=run_at, name="maintenance")
    logger.info("Maintenance scheduled at %02d:00 %s", settings.MAINTENANCE_HOUR, settings.TIMEZONE)


def main() -> None:
    """Build the app and start polling. Logging is configured by the caller."""
    logger.info("Starting PACT Bridge bot...")
    app = build_app()
    app.run_polling()
