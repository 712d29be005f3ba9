"""Notification settings: which chats receive which broadcast categories."""
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from roster.db.base import utcnow
from roster.models.notification_settings import NotificationSettings

logger = logging.getLogger(__name__)

NOTIFICATION_FLAGS = (
    "notif_system",
    "notif_register",
    "notif_availability",
    "notif_plan",
    "notif_conflict",
)


def get_notification_settings(db: Session, chat_id: int) -> Optional[NotificationSettings]:
    return (
        db.query(NotificationSettings)
        .filter(NotificationSettings.chat_id == chat_id, NotificationSettings.is_valid.is_(True))
        .first()
    )


def update_notification_settings(db: Session, chat_id: int, **flags: bool) -> NotificationSettings:
    """Upsert the settings for a chat. Revives a soft deleted row."""
    unknown = set(flags) - set(NOTIFICATION_FLAGS)
    if unknown:
        raise ValueError(f"Unknown notification flags: {sorted(unknown)}")

    row = db.query(NotificationSettings).filter(NotificationSettings.chat_id == chat_id).first()
    if row is None:
        row = NotificationSettings(chat_id=chat_id)
        db.add(row)
    elif not row.is_valid:
        # Start from a clean slate when reviving
        for flag in NOTIFICATION_FLAGS:
            setattr(row, flag, False)

    for flag, value in flags.items():
        setattr(row, flag, bool(value))
    row.is_valid = True
    row.updated = utcnow()
    db.commit()
    db.refresh(row)
    logger.info(f"[NOTIFY] Settings updated for chat_id={chat_id}: {flags}")
    return row


def soft_delete_notification_settings(db: Session, chat_id: int) -> bool:
    row = get_notification_settings(db, chat_id)
    if row is None:
        return False
    for flag in NOTIFICATION_FLAGS:
        setattr(row, flag, False)
    row.is_valid = False
    row.updated = utcnow()
    db.commit()
    logger.info(f"[NOTIFY] Settings disabled for chat_id={chat_id}")
    return True


def get_chats_with_flag(db: Session, flag: str) -> List[int]:
    """Chat ids subscribed to one broadcast category."""
    if flag not in NOTIFICATION_FLAGS:
        raise ValueError(f"Unknown notification flag: {flag}")
    column = getattr(NotificationSettings, flag)
    rows = (
        db.query(NotificationSettings.chat_id)
        .filter(column.is_(True), NotificationSettings.is_valid.is_(True))
        .order_by(NotificationSettings.chat_id)
        .all()
    )
    return [row.chat_id for row in rows]
