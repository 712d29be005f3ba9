from sqlalchemy import BigInteger, Boolean, Column, DateTime, Integer

from roster.db.base import Base, utcnow


class NotificationSettings(Base):
    """Per-chat subscription to broadcast categories. Soft deleted via ``is_valid``."""
    __tablename__ = "notification_settings"

    id = Column(Integer, primary_key=True, index=True)
    chat_id = Column(BigInteger, unique=True, nullable=False, index=True)
    notif_system = Column(Boolean, nullable=False, default=False)
    notif_register = Column(Boolean, nullable=False, default=False)
    notif_availability = Column(Boolean, nullable=False, default=False)
    notif_plan = Column(Boolean, nullable=False, default=False)
    notif_conflict = Column(Boolean, nullable=False, default=False)
    is_valid = Column(Boolean, nullable=False, default=True)
    created = Column(DateTime, nullable=False, default=utcnow)
    updated = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
