"""
Duty Roster Bot backend.

ARCHITECTURE:
- Telegram Bot: registration, availability, planning and settings dialogues
- Notifier: background delivery of planned-duty reminders
- SQL database: source of truth for users, availability and reminders

FastAPI only hosts the process lifecycle and a health endpoint.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from roster.core.config import settings
from roster.db.init_db import init_db
from roster.notifier.scheduler import get_status
from roster.telegram.bot import get_bot_status, start_bot_background, stop_bot_background

logger = logging.getLogger(__name__)


def configure_logging():
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # PTB logs every getUpdates call at DEBUG through httpx
    logging.getLogger("httpx").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
    1. Initialize database tables and the default admin
    2. Start the Telegram bot thread (which also runs the notifier)

    Shutdown:
    1. Stop the bot loop
    """
    configure_logging()
    logger.info("[*] Initializing database...")
    init_db()
    logger.info("[OK] Database initialized")

    if settings.TELEGRAM_BOT_TOKEN:
        logger.info("[*] Starting Telegram bot and notifier...")
        start_bot_background()
    else:
        logger.warning("[WARN] Telegram bot disabled (no token)")

    yield

    if settings.TELEGRAM_BOT_TOKEN:
        stop_bot_background()


app = FastAPI(
    title="Duty Roster Bot",
    description="Telegram duty roster bot with scheduled reminders.",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
def health():
    status = get_status()
    bot = get_bot_status()
    healthy = (bot or not settings.TELEGRAM_BOT_TOKEN) and status["notifier"] is not False and status["audit"] is not False
    return {
        "status": "ok" if healthy else "degraded",
        "bot": bot,
        "notifier": status["notifier"],
        "audit": status["audit"],
    }
