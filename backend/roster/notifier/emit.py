"""
Broadcast messages to every chat subscribed to a category.

The user whose action triggered the broadcast is skipped: they already
see the result on their own screen.
"""
import logging
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from roster.db.session import run_blocking
from roster.services.notifications import get_chats_with_flag

logger = logging.getLogger(__name__)


async def _send_helper(gateway, chats: Iterable[int], message: str, originator_id: Optional[int], type_str: str) -> int:
    sent = 0
    for chat_id in chats:
        if originator_id is not None and chat_id == originator_id:
            logger.debug(f"[EMIT] Skipping {type_str} notification to originator chat_id={chat_id}")
            continue
        if await gateway.send_message(chat_id, message) is None:
            logger.error(f"[EMIT] Failed to send {type_str} notification to chat_id={chat_id}")
        else:
            logger.info(f"[EMIT] Sent {type_str} notification to chat_id={chat_id}")
            sent += 1
    return sent


async def emit(db: Session, gateway, flag: str, message: str, originator_id: Optional[int] = None) -> int:
    """Send ``message`` to chats with ``flag`` set. Returns the number delivered."""
    type_str = flag.replace("notif_", "").upper()
    try:
        chats = await run_blocking(get_chats_with_flag, db, flag)
    except SQLAlchemyError as e:
        logger.error(f"[EMIT] Failed to retrieve {type_str} notification settings: {e}")
        return 0

    if not chats:
        logger.info(f"[EMIT] No {type_str} notifications enabled for any chat.")
        return 0
    return await _send_helper(gateway, chats, message, originator_id, type_str)


async def system_notifications(db: Session, gateway, message: str, originator_id: Optional[int] = None) -> int:
    return await emit(db, gateway, "notif_system", message, originator_id)


async def register_notifications(db: Session, gateway, message: str, originator_id: Optional[int] = None) -> int:
    return await emit(db, gateway, "notif_register", message, originator_id)


async def availability_notifications(db: Session, gateway, message: str, originator_id: Optional[int] = None) -> int:
    return await emit(db, gateway, "notif_availability", message, originator_id)


async def plan_notifications(db: Session, gateway, message: str, originator_id: Optional[int] = None) -> int:
    return await emit(db, gateway, "notif_plan", message, originator_id)


async def conflict_notifications(db: Session, gateway, message: str, originator_id: Optional[int] = None) -> int:
    return await emit(db, gateway, "notif_conflict", message, originator_id)
