"""
ScheduledNotification: a reminder due at ``scheduled_time`` (naive UTC).
Lifecycle: created when an availability is planned -> claimed and marked sent
by the notifier, or invalidated when the availability is unplanned. Never reused.
"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer

from roster.db.base import Base, utcnow


class ScheduledNotification(Base):
    __tablename__ = "scheduled_notifications"

    id = Column(Integer, primary_key=True, index=True)
    avail_id = Column(Integer, ForeignKey("availability.id", ondelete="CASCADE"), nullable=False, index=True)
    scheduled_time = Column(DateTime, nullable=False, index=True)
    sent = Column(Boolean, nullable=False, default=False)
    is_valid = Column(Boolean, nullable=False, default=True)
    created = Column(DateTime, nullable=False, default=utcnow)
    updated = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<ScheduledNotification id={self.id} avail_id={self.avail_id} sent={self.sent}>"
