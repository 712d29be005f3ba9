"""
Apply: a registration request waiting for an admin decision.
Status flow: created by /register -> approved (becomes a User) or rejected (deleted).
"""
from sqlalchemy import BigInteger, Column, DateTime, Enum, Integer, String

from roster.db.base import Base, utcnow
from roster.models.enums import RoleType, UsrType


class Apply(Base):
    __tablename__ = "apply"

    id = Column(Integer, primary_key=True, index=True)
    tele_id = Column(BigInteger, unique=True, nullable=False, index=True)
    chat_username = Column(String(255), nullable=True)
    name = Column(String(255), nullable=False)
    ops_name = Column(String(64), nullable=False)
    usr_type = Column(Enum(UsrType, name="usr_type_enum"), nullable=False)
    role_type = Column(Enum(RoleType, name="role_type_enum"), nullable=False)
    created = Column(DateTime, nullable=False, default=utcnow)
    updated = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
