"""
Availability and planning.

Planning changes are the one multi-row write the dialogue makes: every
toggle staged on the /plan screen is applied by
``toggle_planned_status_multiple`` in a single transaction, together with
the reminder rows the notifier will later deliver.
"""
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from roster.core.config import settings
from roster.core.exceptions import store_errors
from roster.db.base import utcnow
from roster.models.availability import Availability
from roster.models.enums import Ict, RoleType, UsrType
from roster.models.scheduled_notification import ScheduledNotification
from roster.models.user import User
from roster.schemas.availability import AvailabilityDetails

logger = logging.getLogger(__name__)


def local_today(tz_name: Optional[str] = None) -> date:
    return datetime.now(ZoneInfo(tz_name or settings.TIMEZONE)).date()


def _details_query(db: Session):
    return db.query(Availability, User).join(User, Availability.user_id == User.id)


def _to_details(rows) -> List[AvailabilityDetails]:
    return [AvailabilityDetails.from_row(availability, user) for availability, user in rows]


def get_availability_details(db: Session, avail_id: int) -> Optional[AvailabilityDetails]:
    row = _details_query(db).filter(Availability.id == avail_id).first()
    if row is None:
        return None
    return AvailabilityDetails.from_row(*row)


def list_user_availability(db: Session, user_id: int, start_date: date) -> List[AvailabilityDetails]:
    """Valid availability of one user from ``start_date`` on."""
    rows = (
        _details_query(db)
        .filter(
            Availability.user_id == user_id,
            Availability.avail >= start_date,
            Availability.is_valid.is_(True),
        )
        .order_by(Availability.avail)
        .all()
    )
    return _to_details(rows)


def list_planned_upcoming(db: Session, user_id: int, start_date: date) -> List[AvailabilityDetails]:
    rows = (
        _details_query(db)
        .filter(
            Availability.user_id == user_id,
            Availability.avail >= start_date,
            Availability.planned.is_(True),
            Availability.is_valid.is_(True),
        )
        .order_by(Availability.avail)
        .all()
    )
    return _to_details(rows)


def list_planning_by_user(db: Session, user_id: int, start_date: date) -> List[AvailabilityDetails]:
    """Planning snapshot for one user: valid entries plus planned ones that lost validity."""
    rows = (
        _details_query(db)
        .filter(
            Availability.user_id == user_id,
            Availability.avail >= start_date,
            or_(Availability.is_valid.is_(True), Availability.planned.is_(True)),
        )
        .order_by(Availability.avail)
        .all()
    )
    return _to_details(rows)


def list_planning_by_date(db: Session, day: date, role_type: RoleType) -> List[AvailabilityDetails]:
    """Planning snapshot for one date and role, ordered by ops name."""
    rows = (
        _details_query(db)
        .filter(
            Availability.avail == day,
            User.role_type == role_type,
            User.is_valid.is_(True),
            or_(Availability.is_valid.is_(True), Availability.planned.is_(True)),
        )
        .order_by(User.ops_name)
        .all()
    )
    return _to_details(rows)


def add_availability(
    db: Session,
    user_id: int,
    dates: Iterable[date],
    ict_type: Ict,
    remarks: Optional[str] = None,
) -> List[Tuple[date, bool]]:
    """
    Declare availability for several dates in one commit.

    Returns (date, added) pairs; ``added`` is False when the user already
    had a valid entry on that date. A withdrawn entry is revived in place.
    """
    now = utcnow()
    results = []
    for day in sorted(set(dates)):
        existing = (
            db.query(Availability)
            .filter(Availability.user_id == user_id, Availability.avail == day)
            .first()
        )
        if existing is not None and existing.is_valid:
            results.append((day, False))
            continue

        if existing is None:
            db.add(Availability(user_id=user_id, avail=day, ict_type=ict_type, remarks=remarks))
        else:
            invalidate_notifications(db, existing.id, now)
            existing.ict_type = ict_type
            existing.remarks = remarks
            existing.planned = False
            existing.saf100 = False
            existing.attended = False
            existing.is_valid = True
            existing.updated = now
        results.append((day, True))

    db.commit()
    added = sum(1 for _, is_new in results if is_new)
    logger.info(f"[AVAILABILITY] user_id={user_id} added {added} of {len(results)} dates ({ict_type.value})")
    return results


def withdraw_availability(db: Session, avail_id: int) -> Optional[AvailabilityDetails]:
    """Soft delete an availability and invalidate its pending reminders."""
    row = _details_query(db).filter(Availability.id == avail_id, Availability.is_valid.is_(True)).first()
    if row is None:
        return None
    availability, user = row
    now = utcnow()
    availability.is_valid = False
    availability.updated = now
    invalidate_notifications(db, availability.id, now)
    details = AvailabilityDetails.from_row(availability, user)
    db.commit()
    logger.info(f"[AVAILABILITY] Availability #{avail_id} withdrawn by {user.ops_name} ({availability.avail})")
    return details


def reminder_times(
    avail_date: date,
    now: datetime,
    lead_days: Sequence[int] = None,
    hour: int = None,
    tz_name: str = None,
) -> List[datetime]:
    """
    Naive UTC send times for a newly planned duty.

    Always one immediate reminder, then one per lead day at ``hour`` local
    time, skipping any that would already be in the past.
    """
    lead_days = settings.REMINDER_LEAD_DAYS if lead_days is None else lead_days
    hour = settings.REMINDER_HOUR if hour is None else hour
    tz = ZoneInfo(tz_name or settings.TIMEZONE)

    times = [now]
    for days in sorted(set(lead_days), reverse=True):
        local = datetime.combine(avail_date - timedelta(days=days), time(hour=hour), tzinfo=tz)
        at = local.astimezone(timezone.utc).replace(tzinfo=None)
        if at > now:
            times.append(at)
    return times


def schedule_notifications(db: Session, availability: Availability, now: datetime) -> List[ScheduledNotification]:
    rows = [
        ScheduledNotification(avail_id=availability.id, scheduled_time=at, created=now, updated=now)
        for at in reminder_times(availability.avail, now)
    ]
    db.add_all(rows)
    return rows


def invalidate_notifications(db: Session, avail_id: int, now: Optional[datetime] = None) -> int:
    """Invalidate unsent reminders of one availability. Sent rows are left as history."""
    return (
        db.query(ScheduledNotification)
        .filter(
            ScheduledNotification.avail_id == avail_id,
            ScheduledNotification.sent.is_(False),
            ScheduledNotification.is_valid.is_(True),
        )
        .update({"is_valid": False, "updated": now or utcnow()}, synchronize_session=False)
    )


def toggle_planned_status_multiple(
    db: Session,
    avail_ids: Iterable[int],
    now: Optional[datetime] = None,
) -> List[AvailabilityDetails]:
    """
    Flip ``planned`` on every listed availability in one transaction.

    Newly planned entries get their reminders scheduled, newly unplanned
    ones get unsent reminders invalidated. Either everything commits or
    nothing does; failures surface as ``StoreError``.

    Returns the updated entries, ordered by date then ops name.
    """
    ids = sorted(set(avail_ids))
    if not ids:
        return []
    now = now or utcnow()

    with store_errors("toggle planned status"):
        try:
            rows = (
                _details_query(db)
                .filter(Availability.id.in_(ids))
                .with_for_update(of=Availability)
                .all()
            )
            for availability, _user in rows:
                availability.planned = not availability.planned
                availability.updated = now
                if availability.planned:
                    schedule_notifications(db, availability, now)
                else:
                    invalidate_notifications(db, availability.id, now)
            db.flush()
            results = _to_details(rows)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise

    missing = set(ids) - {entry.id for entry in results}
    if missing:
        logger.warning(f"[PLAN] Availability ids not found during toggle: {sorted(missing)}")
    return sorted(results, key=lambda entry: (entry.avail, entry.ops_name))


def audit_scheduled_notifications(db: Session) -> int:
    """Invalidate reminders whose availability or user is no longer valid."""
    stale = (
        db.query(ScheduledNotification.id)
        .outerjoin(
            Availability,
            and_(ScheduledNotification.avail_id == Availability.id, Availability.is_valid.is_(True)),
        )
        .outerjoin(User, and_(Availability.user_id == User.id, User.is_valid.is_(True)))
        .filter(
            ScheduledNotification.is_valid.is_(True),
            or_(Availability.id.is_(None), User.id.is_(None)),
        )
        .all()
    )
    ids = [row.id for row in stale]
    for notification_id in ids:
        logger.warning(f"[AUDIT] Notification ID {notification_id} has invalid or missing availability/user.")
    if ids:
        (
            db.query(ScheduledNotification)
            .filter(ScheduledNotification.id.in_(ids))
            .update({"is_valid": False, "updated": utcnow()}, synchronize_session=False)
        )
    db.commit()
    return len(ids)


# ============================================================================
# SAF100 AND FORECAST
# ============================================================================

def list_ns_availability(db: Session, start_date: date, planned_only: bool = False) -> List[AvailabilityDetails]:
    """
    Availability of NS users from ``start_date`` on, for SAF100 tracking.

    Planned entries stay listed after losing validity so their SAF100
    status can still be read.
    """
    query = _details_query(db).filter(
        User.usr_type == UsrType.NS,
        User.is_valid.is_(True),
        Availability.avail >= start_date,
    )
    if planned_only:
        query = query.filter(Availability.planned.is_(True))
    else:
        query = query.filter(or_(Availability.is_valid.is_(True), Availability.planned.is_(True)))
    return _to_details(query.order_by(Availability.avail, User.ops_name).all())


def set_saf100_issued(db: Session, avail_id: int) -> Optional[AvailabilityDetails]:
    """Mark the SAF100 of a valid availability as issued. None if it is gone or already issued."""
    row = (
        _details_query(db)
        .filter(
            Availability.id == avail_id,
            Availability.is_valid.is_(True),
            Availability.saf100.is_(False),
        )
        .first()
    )
    if row is None:
        return None
    availability, user = row
    availability.saf100 = True
    availability.updated = utcnow()
    details = AvailabilityDetails.from_row(availability, user)
    db.commit()
    logger.info(f"[SAF100] Availability #{avail_id} marked issued ({user.ops_name}, {availability.avail})")
    return details


def list_availability_for_role_and_dates(
    db: Session,
    role_type: RoleType,
    start_date: date,
    end_date: date,
) -> List[AvailabilityDetails]:
    """Valid or planned availability of one role between two dates, inclusive."""
    rows = (
        _details_query(db)
        .filter(
            User.role_type == role_type,
            User.is_valid.is_(True),
            Availability.avail >= start_date,
            Availability.avail <= end_date,
            or_(Availability.is_valid.is_(True), Availability.planned.is_(True)),
        )
        .order_by(Availability.avail, User.ops_name)
        .all()
    )
    return _to_details(rows)


def last_availability_date(db: Session, role_type: RoleType, start_date: date) -> Optional[date]:
    """Latest valid or planned availability date for a role from ``start_date`` on."""
    row = (
        db.query(Availability.avail)
        .join(User, Availability.user_id == User.id)
        .filter(
            User.role_type == role_type,
            User.is_valid.is_(True),
            Availability.avail >= start_date,
            or_(Availability.is_valid.is_(True), Availability.planned.is_(True)),
        )
        .order_by(Availability.avail.desc())
        .first()
    )
    return row.avail if row else None
