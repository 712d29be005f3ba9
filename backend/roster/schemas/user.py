from typing import Optional

from pydantic import BaseModel

from roster.models.enums import RoleType, UsrType


class UserSchema(BaseModel):
    id: int
    tele_id: int
    name: str
    ops_name: str
    usr_type: UsrType
    role_type: RoleType
    admin: bool = False

    class Config:
        from_attributes = True
        frozen = True


class ApplySchema(BaseModel):
    id: int
    tele_id: int
    chat_username: Optional[str] = None
    name: str
    ops_name: str
    usr_type: UsrType
    role_type: RoleType

    class Config:
        from_attributes = True
        frozen = True
