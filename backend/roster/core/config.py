"""Application configuration.

Environment variables override all defaults. A ``.env`` file in the backend
directory is loaded for local development.
"""

import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv

_BACKEND_DIR = Path(__file__).resolve().parents[2]
load_dotenv(dotenv_path=_BACKEND_DIR / ".env", override=False)


def _int_list(value: str) -> List[int]:
    return [int(part) for part in value.split(",") if part.strip()]


def _bounded_int(name: str, default: int, low: int, high: int) -> int:
    value = int(os.getenv(name, str(default)))
    if not low <= value <= high:
        raise ValueError(f"{name} must be between {low} and {high}, got {value}")
    return value


class Settings:
    # Database Configuration
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./roster.db")
    # A write waiting on a row or database lock fails after this long
    DB_LOCK_TIMEOUT_SECONDS: int = int(os.getenv("DB_LOCK_TIMEOUT_SECONDS", "10"))

    # Telegram Bot (Must be set via .env, never in code)
    TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")

    # Dates shown to users and reminder times are computed in this zone
    TIMEZONE: str = os.getenv("TIMEZONE", "UTC")

    # Background tasks
    NOTIFIER_INTERVAL_SECONDS: int = int(os.getenv("NOTIFIER_INTERVAL_SECONDS", "60"))
    AUDIT_INTERVAL_SECONDS: int = int(os.getenv("AUDIT_INTERVAL_SECONDS", "3600"))

    # Reminders are created this many days before a planned duty, at REMINDER_HOUR local time
    REMINDER_LEAD_DAYS: List[int] = _int_list(os.getenv("REMINDER_LEAD_DAYS", "7,1"))
    REMINDER_HOUR: int = int(os.getenv("REMINDER_HOUR", "9"))

    # Dialogue screens. Every button payload must stay within Telegram's
    # 64 bytes at the longest allowed token.
    MAX_CALLBACK_TOKEN_LENGTH = 8
    CALLBACK_TOKEN_LENGTH: int = _bounded_int("CALLBACK_TOKEN_LENGTH", 5, 4, MAX_CALLBACK_TOKEN_LENGTH)
    PAGE_SIZE: int = int(os.getenv("PAGE_SIZE", "8"))

    # Default admin user, created on first start when DEFAULT_TELEGRAM_ID is set
    DEFAULT_TELEGRAM_ID: str = os.getenv("DEFAULT_TELEGRAM_ID", "")
    DEFAULT_USER_NAME: str = os.getenv("DEFAULT_USER_NAME", "Default User")
    DEFAULT_OPS_NAME: str = os.getenv("DEFAULT_OPS_NAME", "DEFAULT")

    # run_server.py
    HOST: str = os.getenv("HOST", "127.0.0.1")
    PORT: int = int(os.getenv("PORT", "8000"))

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    DEBUG: bool = ENVIRONMENT == "development"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG else "INFO")


settings = Settings()
