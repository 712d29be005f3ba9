from sqlalchemy import Boolean, Column, Date, DateTime, Enum, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from roster.db.base import Base, utcnow
from roster.models.enums import Ict


class Availability(Base):
    """
    One date a user has declared available for duty.

    Rows are never deleted: withdrawing availability clears ``is_valid``.
    ``planned`` is set by admins through /plan; a planned row that loses
    validity stays visible to planners so it can be unplanned.
    """
    __tablename__ = "availability"
    __table_args__ = (UniqueConstraint("user_id", "avail", name="uq_availability_user_date"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    avail = Column(Date, nullable=False, index=True)
    ict_type = Column(Enum(Ict, name="ict_enum"), nullable=False)
    remarks = Column(String(255), nullable=True)
    planned = Column(Boolean, nullable=False, default=False)
    saf100 = Column(Boolean, nullable=False, default=False)
    attended = Column(Boolean, nullable=False, default=False)
    is_valid = Column(Boolean, nullable=False, default=True)
    created = Column(DateTime, nullable=False, default=utcnow)
    updated = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", backref="availability")
