"""
Scheduled notification claims.

A ``NotificationBatch`` is one notifier tick's unit of work: it claims the
due rows with ``FOR UPDATE SKIP LOCKED``, so a second notifier running at
the same time (another tick, another instance) never sees them, and holds
the locks until ``commit`` or ``rollback``.

Rows marked sent are written in a single UPDATE at ``commit``. Until then
the batch has only read, so on SQLite it holds no write lock while the
notifier waits on Telegram.
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from roster.core.exceptions import store_errors
from roster.db.base import utcnow
from roster.models.availability import Availability
from roster.models.scheduled_notification import ScheduledNotification
from roster.models.user import User

logger = logging.getLogger(__name__)


class NotificationBatch:
    def __init__(self, db: Session):
        self.db = db
        self._sent_ids: List[int] = []

    def claim_due(self, now: datetime) -> List[ScheduledNotification]:
        with store_errors("claim due notifications"):
            return (
                self.db.query(ScheduledNotification)
                .filter(
                    ScheduledNotification.scheduled_time <= now,
                    ScheduledNotification.sent.is_(False),
                    ScheduledNotification.is_valid.is_(True),
                )
                .order_by(ScheduledNotification.scheduled_time, ScheduledNotification.id)
                .with_for_update(skip_locked=True)
                .all()
            )

    def get_availability(self, avail_id: int) -> Optional[Availability]:
        with store_errors("fetch availability"):
            return (
                self.db.query(Availability)
                .filter(Availability.id == avail_id, Availability.is_valid.is_(True))
                .first()
            )

    def get_user(self, user_id: int) -> Optional[User]:
        with store_errors("fetch user"):
            return self.db.query(User).filter(User.id == user_id, User.is_valid.is_(True)).first()

    def mark_sent(self, notification: ScheduledNotification) -> None:
        self._sent_ids.append(notification.id)

    def commit(self) -> None:
        with store_errors("commit notification batch"):
            if self._sent_ids:
                (
                    self.db.query(ScheduledNotification)
                    .filter(ScheduledNotification.id.in_(self._sent_ids))
                    .update({"sent": True, "updated": utcnow()}, synchronize_session=False)
                )
            self.db.commit()
        self._sent_ids = []

    def rollback(self) -> None:
        self._sent_ids = []
        with store_errors("roll back notification batch"):
            self.db.rollback()

    def close(self) -> None:
        self.db.close()


def batch_factory(session_factory: Callable[[], Session]) -> Callable[[], NotificationBatch]:
    def open_batch() -> NotificationBatch:
        return NotificationBatch(session_factory())
    return open_batch
