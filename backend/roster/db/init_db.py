"""Create all tables. Run on app startup.

Adds the default admin user from DEFAULT_TELEGRAM_ID so a fresh deployment
has someone who can approve registrations.
"""
import logging

from roster.core.config import settings
from roster.db.base import Base
from roster.db.session import engine, SessionLocal
from roster import models  # noqa: F401 - register models
from roster.models.enums import RoleType, UsrType
from roster.models.user import User
from roster.services.notifications import update_notification_settings

logger = logging.getLogger(__name__)


def add_default_user(db) -> User | None:
    if not settings.DEFAULT_TELEGRAM_ID:
        logger.info("DEFAULT_TELEGRAM_ID is not set. No default user will be added.")
        return None

    try:
        tele_id = int(settings.DEFAULT_TELEGRAM_ID)
    except ValueError:
        logger.error(f"Invalid DEFAULT_TELEGRAM_ID value: {settings.DEFAULT_TELEGRAM_ID}")
        return None

    existing = db.query(User).filter(User.tele_id == tele_id).first()
    if existing:
        logger.debug(f"Default user {tele_id} already exists")
        return existing

    user = User(
        tele_id=tele_id,
        name=settings.DEFAULT_USER_NAME,
        ops_name=settings.DEFAULT_OPS_NAME.upper(),
        usr_type=UsrType.ACTIVE,
        role_type=RoleType.PILOT,
        admin=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    # The admin's private chat receives every broadcast category by default
    update_notification_settings(
        db,
        tele_id,
        notif_system=True,
        notif_register=True,
        notif_availability=True,
        notif_plan=True,
        notif_conflict=True,
    )
    logger.info(f"Default admin user created: tele_id={tele_id}, ops_name={user.ops_name}")
    return user


def init_db():
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        add_default_user(db)
    finally:
        db.close()
