from sqlalchemy import BigInteger, Boolean, Column, DateTime, Enum, Integer, String

from roster.db.base import Base, utcnow
from roster.models.enums import RoleType, UsrType


class User(Base):
    """Registered roster member. ``tele_id`` doubles as the private chat id."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    tele_id = Column(BigInteger, unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    ops_name = Column(String(64), unique=True, nullable=False)
    usr_type = Column(Enum(UsrType, name="usr_type_enum"), nullable=False)
    role_type = Column(Enum(RoleType, name="role_type_enum"), nullable=False)
    admin = Column(Boolean, nullable=False, default=False)
    is_valid = Column(Boolean, nullable=False, default=True)
    created = Column(DateTime, nullable=False, default=utcnow)
    updated = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<User tele_id={self.tele_id} ops_name={self.ops_name}>"
