"""Database engine and session factory.

SQLite (development, tests) runs without a pool so the bot thread and the
server thread never share a connection. Anything else is expected to be
PostgreSQL, where the notifier's claims rely on FOR UPDATE SKIP LOCKED.

Sessions are synchronous. Code on the bot's event loop goes through
``run_blocking`` so a query waiting on a lock holds up one worker thread,
not every chat and the notifier.
"""
import asyncio
import functools

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from roster.core.config import settings


def create_db_engine(url: str, lock_timeout: int = None) -> Engine:
    lock_timeout = settings.DB_LOCK_TIMEOUT_SECONDS if lock_timeout is None else lock_timeout
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": lock_timeout},
            poolclass=NullPool,
        )
    return create_engine(
        url,
        connect_args={"options": f"-c lock_timeout={lock_timeout * 1000}"},
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
    )


def make_session_factory(bind) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


async def run_blocking(fn, *args, **kwargs):
    """Run a synchronous store call in the loop's default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))


engine = create_db_engine(settings.DATABASE_URL)
SessionLocal = make_session_factory(engine)
