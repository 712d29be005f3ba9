"""Users and registration requests."""
import logging
import re
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from roster.core.exceptions import UserChangeRefused
from roster.db.base import utcnow
from roster.models.apply import Apply
from roster.models.availability import Availability
from roster.models.enums import RoleType, UsrType
from roster.models.notification_settings import NotificationSettings
from roster.models.user import User
from roster.schemas.user import ApplySchema, UserSchema
from roster.services.notifications import NOTIFICATION_FLAGS
from roster.services.scheduling import invalidate_notifications

logger = logging.getLogger(__name__)

NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z .'\-]{0,63}$")
OPS_NAME_PATTERN = re.compile(r"^[A-Z0-9][A-Z0-9 ]{0,19}$")


def clean_name(text: str) -> Optional[str]:
    """Collapse whitespace; None if the result is not an acceptable full name."""
    name = " ".join(text.split())
    return name if NAME_PATTERN.match(name) else None


def clean_ops_name(text: str) -> Optional[str]:
    """Ops names are stored upper-case, letters, digits and single spaces."""
    ops_name = " ".join(text.split()).upper()
    return ops_name if OPS_NAME_PATTERN.match(ops_name) else None


def get_user_by_tele_id(db: Session, tele_id: int) -> Optional[User]:
    return db.query(User).filter(User.tele_id == tele_id, User.is_valid.is_(True)).first()


def get_user_by_ops_name(db: Session, ops_name: str) -> Optional[User]:
    return (
        db.query(User)
        .filter(User.ops_name == ops_name.strip().upper(), User.is_valid.is_(True))
        .first()
    )


def get_user(db: Session, user_id: int) -> Optional[User]:
    return db.query(User).filter(User.id == user_id, User.is_valid.is_(True)).first()


def ops_name_taken(db: Session, ops_name: str, tele_id: Optional[int] = None) -> bool:
    """
    True if a user or a pending application already uses the ops name.

    Removed users keep their ops name; only the same Telegram account
    (``tele_id``) may take it back when registering again.
    """
    holder = db.query(User).filter(User.ops_name == ops_name).first()
    if holder is not None and (holder.is_valid or holder.tele_id != tele_id):
        return True
    return db.query(Apply).filter(Apply.ops_name == ops_name).first() is not None


def get_apply_by_tele_id(db: Session, tele_id: int) -> Optional[Apply]:
    return db.query(Apply).filter(Apply.tele_id == tele_id).first()


def get_apply(db: Session, apply_id: int) -> Optional[Apply]:
    return db.query(Apply).filter(Apply.id == apply_id).first()


def list_applies(db: Session) -> List[Apply]:
    return db.query(Apply).order_by(Apply.created, Apply.id).all()


def create_apply(
    db: Session,
    tele_id: int,
    chat_username: Optional[str],
    name: str,
    ops_name: str,
    role_type: RoleType,
    usr_type: UsrType,
) -> Apply:
    apply = Apply(
        tele_id=tele_id,
        chat_username=chat_username,
        name=name,
        ops_name=ops_name,
        role_type=role_type,
        usr_type=usr_type,
    )
    db.add(apply)
    db.commit()
    db.refresh(apply)
    logger.info(f"[REGISTER] Application #{apply.id} created for tele_id={tele_id} ({ops_name})")
    return apply


def approve_apply(db: Session, apply_id: int, admin: bool = False) -> Optional[User]:
    """
    Turn an application into a user. None if the application is gone.

    A removed user who registered again gets their old row back.
    """
    apply = get_apply(db, apply_id)
    if apply is None:
        return None

    user = db.query(User).filter(User.tele_id == apply.tele_id).first()
    if user is None:
        user = User(tele_id=apply.tele_id)
        db.add(user)
    user.name = apply.name
    user.ops_name = apply.ops_name
    user.usr_type = apply.usr_type
    user.role_type = apply.role_type
    user.admin = admin
    user.is_valid = True
    user.updated = utcnow()
    db.delete(apply)
    db.commit()
    db.refresh(user)
    logger.info(f"[REGISTER] Application #{apply_id} approved as user #{user.id} (admin={admin})")
    return user


def reject_apply(db: Session, apply_id: int) -> Optional[ApplySchema]:
    apply = get_apply(db, apply_id)
    if apply is None:
        return None
    snapshot = ApplySchema.model_validate(apply)
    db.delete(apply)
    db.commit()
    logger.info(f"[REGISTER] Application #{apply_id} rejected")
    return snapshot


# ============================================================================
# USER MANAGEMENT (/user)
# ============================================================================

def list_users(db: Session) -> List[User]:
    return db.query(User).filter(User.is_valid.is_(True)).order_by(User.ops_name).all()


def is_last_admin(db: Session, user_id: int) -> bool:
    """True if this user is an admin and no other valid admin exists."""
    user = get_user(db, user_id)
    if user is None or not user.admin:
        return False
    others = (
        db.query(User)
        .filter(User.admin.is_(True), User.is_valid.is_(True), User.id != user_id)
        .count()
    )
    return others == 0


def update_user(
    db: Session,
    user_id: int,
    name: str,
    ops_name: str,
    role_type: RoleType,
    usr_type: UsrType,
    admin: bool,
) -> Optional[Tuple[UserSchema, UserSchema]]:
    """
    Write an edited user. Returns (before, after), or None if the user is gone.

    Raises ``UserChangeRefused`` if the ops name is taken by someone else
    or the change would demote the last admin.
    """
    user = get_user(db, user_id)
    if user is None:
        return None
    before = UserSchema.model_validate(user)

    if ops_name != user.ops_name and ops_name_taken(db, ops_name):
        raise UserChangeRefused(f"The ops name {ops_name} is already in use.")
    if user.admin and not admin and is_last_admin(db, user_id):
        raise UserChangeRefused(f"{user.ops_name} is the only admin and must stay one.")

    user.name = name
    user.ops_name = ops_name
    user.role_type = role_type
    user.usr_type = usr_type
    user.admin = admin
    user.updated = utcnow()
    db.commit()
    db.refresh(user)

    after = UserSchema.model_validate(user)
    logger.info(f"[USER] User #{user_id} updated: {before.model_dump()} -> {after.model_dump()}")
    return before, after


def remove_user(db: Session, user_id: int) -> Optional[UserSchema]:
    """
    Soft delete a user. Their unsent reminders are invalidated and their
    private chat stops receiving broadcasts. None if the user is gone.
    """
    user = get_user(db, user_id)
    if user is None:
        return None
    if is_last_admin(db, user_id):
        raise UserChangeRefused(f"{user.ops_name} is the only admin and cannot be removed.")

    snapshot = UserSchema.model_validate(user)
    now = utcnow()
    user.is_valid = False
    user.admin = False
    user.updated = now

    invalidated = 0
    for (avail_id,) in db.query(Availability.id).filter(Availability.user_id == user_id).all():
        invalidated += invalidate_notifications(db, avail_id, now)

    chat_settings = (
        db.query(NotificationSettings)
        .filter(NotificationSettings.chat_id == user.tele_id, NotificationSettings.is_valid.is_(True))
        .first()
    )
    if chat_settings is not None:
        for flag in NOTIFICATION_FLAGS:
            setattr(chat_settings, flag, False)
        chat_settings.is_valid = False
        chat_settings.updated = now

    db.commit()
    logger.info(f"[USER] User #{user_id} ({snapshot.ops_name}) removed, {invalidated} reminder(s) invalidated")
    return snapshot
