"""
Telegram application wiring.

The bot runs in a daemon thread with its own event loop; the notifier
loops share that loop so reminders go out through the same Bot instance.
"""
import asyncio
import logging
import threading
from typing import Optional

from telegram import Update
from telegram import error
from telegram.constants import ChatType
from telegram.ext import Application, CallbackQueryHandler, ContextTypes, MessageHandler, filters

from roster.core.config import settings
from roster.db.session import SessionLocal
from roster.notifier.emit import system_notifications
from roster.notifier.scheduler import start_notifier, stop_notifier
from roster.services.scheduled_notifications import batch_factory
from roster.telegram.engine import ButtonEvent, DialogueEngine, MessageEvent
from roster.telegram.gateway import TelegramGateway
from roster.telegram.handlers import (
    approve,
    availability,
    common,
    forecast,
    notify,
    plan,
    register,
    saf100,
    upcoming,
    user,
)

logger = logging.getLogger(__name__)

_bot_app: Optional[Application] = None
_bot_loop: Optional[asyncio.AbstractEventLoop] = None


def build_engine(gateway, session_factory=SessionLocal, **kwargs) -> DialogueEngine:
    engine = DialogueEngine(gateway, session_factory, **kwargs)
    for screen in (common, register, approve, user, availability, plan, saf100, forecast, notify, upcoming):
        screen.register(engine)
    return engine


async def _on_text(update: Update, context: ContextTypes.DEFAULT_TYPE):
    message = update.effective_message
    chat = update.effective_chat
    user = update.effective_user
    if message is None or chat is None or user is None or message.text is None:
        return

    event = MessageEvent(
        chat_id=chat.id,
        user_id=user.id,
        username=user.username,
        text=message.text,
        private=chat.type == ChatType.PRIVATE,
        message_id=message.message_id,
    )
    await context.application.bot_data["engine"].handle_message(event)


async def _on_button(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    chat = update.effective_chat
    if query is None or chat is None:
        return

    event = ButtonEvent(
        chat_id=chat.id,
        user_id=query.from_user.id,
        username=query.from_user.username,
        data=query.data or "",
        interaction_id=query.id,
        private=chat.type == ChatType.PRIVATE,
        message_id=query.message.message_id if query.message else None,
    )
    await context.application.bot_data["engine"].handle_button(event)


async def _on_error(update: object, context: ContextTypes.DEFAULT_TYPE):
    logger.error(f"[Telegram] Unhandled error while processing update: {context.error}", exc_info=context.error)


def build_application(token: str) -> Application:
    app = Application.builder().token(token).concurrent_updates(True).build()
    gateway = TelegramGateway(app.bot)
    app.bot_data["gateway"] = gateway
    app.bot_data["engine"] = build_engine(gateway)

    app.add_handler(MessageHandler(filters.TEXT & filters.UpdateType.MESSAGE, _on_text))
    app.add_handler(CallbackQueryHandler(_on_button))
    app.add_error_handler(_on_error)
    return app


async def _start_polling_with_retry(app, max_retries=3, initial_backoff=2):
    for attempt in range(max_retries):
        try:
            logger.info(f"[Telegram] Starting polling (attempt {attempt + 1}/{max_retries})...")
            await app.updater.start_polling(drop_pending_updates=True)
            logger.info("[Telegram] Polling started successfully")
            return True
        except error.Conflict as e:
            if attempt < max_retries - 1:
                backoff = initial_backoff * (2 ** attempt)
                logger.warning(f"[Telegram] Conflict detected: {e}. Retrying in {backoff}s...")
                await asyncio.sleep(backoff)
            else:
                logger.error(f"[Telegram] Failed after {max_retries} retries. Bot disabled. Error: {e}")
                return False
    return False


async def _start_background(app: Application):
    gateway = app.bot_data["gateway"]
    start_notifier(batch_factory(SessionLocal), SessionLocal, gateway)

    db = SessionLocal()
    try:
        await system_notifications(db, gateway, "Roster bot is online.")
    finally:
        db.close()


async def _shutdown(app: Application):
    stop_notifier()
    try:
        if app.updater and app.updater.running:
            await app.updater.stop()
        if app.running:
            await app.stop()
        await app.shutdown()
    except error.TelegramError as e:
        logger.error(f"[Telegram] Error during shutdown: {e}")


def _run_bot():
    global _bot_app, _bot_loop
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    _bot_loop = loop

    try:
        _bot_app = build_application(settings.TELEGRAM_BOT_TOKEN)
        loop.run_until_complete(_bot_app.initialize())
        _bot_app.bot_data["engine"].bot_username = _bot_app.bot.username
        loop.run_until_complete(_bot_app.start())

        if not loop.run_until_complete(_start_polling_with_retry(_bot_app)):
            return
        loop.run_until_complete(_start_background(_bot_app))

        loop.run_forever()
    except Exception as e:
        logger.error(f"[Telegram] Bot error: {e}", exc_info=True)
    finally:
        if _bot_app:
            loop.run_until_complete(_shutdown(_bot_app))
        loop.close()
        _bot_loop = None


def start_bot_background():
    if not settings.TELEGRAM_BOT_TOKEN:
        return
    t = threading.Thread(target=_run_bot, name="telegram-bot", daemon=True)
    t.start()


def stop_bot_background():
    """Stop polling and the notifier. Called on FastAPI shutdown."""
    if _bot_loop is not None and _bot_loop.is_running():
        _bot_loop.call_soon_threadsafe(_bot_loop.stop)


def get_bot_status() -> bool:
    return _bot_app is not None and _bot_app.running
