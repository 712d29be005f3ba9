from datetime import date
from typing import Optional

from pydantic import BaseModel

from roster.models.enums import Ict, UsrType


class AvailabilityDetails(BaseModel):
    """Availability row joined with the owner's ops name and type."""
    id: int
    user_id: int
    ops_name: str
    usr_type: UsrType
    avail: date
    ict_type: Ict
    remarks: Optional[str] = None
    planned: bool = False
    saf100: bool = False
    attended: bool = False
    is_valid: bool = True

    class Config:
        frozen = True

    @classmethod
    def from_row(cls, availability, user) -> "AvailabilityDetails":
        return cls(
            id=availability.id,
            user_id=availability.user_id,
            ops_name=user.ops_name,
            usr_type=user.usr_type,
            avail=availability.avail,
            ict_type=availability.ict_type,
            remarks=availability.remarks,
            planned=availability.planned,
            saf100=availability.saf100,
            attended=availability.attended,
            is_valid=availability.is_valid,
        )
