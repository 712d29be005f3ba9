"""
Error types shared by the dialogue engine, the services and the notifier.

Users only ever see generic messages. Internal details (SQL errors,
Telegram API responses) go to the log.
"""
import logging
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class RosterError(Exception):
    """Base class for application errors."""


class StoreError(RosterError):
    """A data store read or write failed.

    Raised from service code; the dialogue engine turns it into the
    generic database message and moves the chat to ``ErrorState``.
    """

    def __init__(self, operation: str):
        super().__init__(f"Data store failure during {operation}")
        self.operation = operation


class GatewayError(RosterError):
    """The chat platform did not return a message the caller depends on."""


class CallbackDataTooLong(RosterError, ValueError):
    """Encoded button payload does not fit the platform limit.

    This is a programming error in an action definition, never a runtime
    condition to recover from.
    """


class UserChangeRefused(RosterError):
    """A user edit or removal would break a roster rule.

    The message is safe to show to the admin making the change.
    """


@contextmanager
def store_errors(operation: str):
    """
    Translate SQLAlchemy failures into ``StoreError``.

    Logs the real error with traceback, re-raises with a safe message.

    Usage:
        with store_errors("toggle planned status"):
            db.commit()
    """
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(
            f"Store failure during {operation}: {type(e).__name__}: {e}",
            exc_info=True,
        )
        raise StoreError(operation) from e
