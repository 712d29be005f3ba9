"""
Dialogue states.

Each conversation step is its own frozen model carrying exactly what the
step needs to resume. ``Screen`` states own an on-screen message with
buttons; ``token`` is the session token those buttons were rendered with.
"""
from datetime import date
from typing import Optional, Union

from pydantic import BaseModel

from roster.models.enums import Ict, RoleType, UsrType
from roster.schemas.availability import AvailabilityDetails
from roster.schemas.notification import NotificationSettingsSchema
from roster.schemas.user import ApplySchema, UserSchema
from roster.telegram.overlay import DiffOverlay


class State(BaseModel):
    class Config:
        frozen = True


class Screen(State):
    msg_id: int
    token: str


class Start(State):
    pass


class ErrorState(State):
    pass


# /register
class RegisterRole(Screen):
    pass


class RegisterType(Screen):
    role_type: RoleType


class RegisterName(State):
    role_type: RoleType
    usr_type: UsrType


class RegisterOpsName(State):
    role_type: RoleType
    usr_type: UsrType
    name: str


class RegisterComplete(Screen):
    role_type: RoleType
    usr_type: UsrType
    name: str
    ops_name: str


# /approve
class ApplyView(Screen):
    start: int = 0


class ApplyReview(Screen):
    apply: ApplySchema
    start: int = 0


# /availability
class AvailabilityView(Screen):
    user: UserSchema


class AvailabilityAddType(Screen):
    user: UserSchema


class AvailabilityAddDates(State):
    user: UserSchema
    ict_type: Ict


class AvailabilitySelect(Screen):
    user: UserSchema
    start: int = 0


class AvailabilityDeleteConfirm(Screen):
    user: UserSchema
    availability: AvailabilityDetails
    start: int = 0


# /plan
class PlanSelect(State):
    pass


class PlanView(Screen):
    """Either one user's dates (``user`` set) or one date's users for a role."""
    user: Optional[UserSchema] = None
    day: Optional[date] = None
    role_type: RoleType = RoleType.PILOT
    start: int = 0
    overlay: DiffOverlay = DiffOverlay()


# /notify
class NotifySettings(Screen):
    origin_chat_id: int
    settings: NotificationSettingsSchema


# /user
class UserSelect(State):
    pass


class UserEdit(Screen):
    """``edited`` collects the changes; nothing is written until DONE."""
    original: UserSchema
    edited: UserSchema
    last_admin: bool = False


class UserEditName(State):
    msg_id: int
    original: UserSchema
    edited: UserSchema
    last_admin: bool = False


class UserEditOpsName(State):
    msg_id: int
    original: UserSchema
    edited: UserSchema
    last_admin: bool = False


class UserEditOption(Screen):
    original: UserSchema
    edited: UserSchema
    last_admin: bool = False
    field: str


class UserDeleteConfirm(Screen):
    original: UserSchema
    edited: UserSchema
    last_admin: bool = False


# /saf100
class Saf100Select(Screen):
    pass


class Saf100View(Screen):
    planned_only: bool = False
    start: int = 0


class Saf100Confirm(Screen):
    availability: AvailabilityDetails
    planned_only: bool = False
    start: int = 0


# /forecast
class ForecastView(Screen):
    role_type: RoleType
    start: date
    end: date


AnyState = Union[
    Start,
    ErrorState,
    RegisterRole,
    RegisterType,
    RegisterName,
    RegisterOpsName,
    RegisterComplete,
    ApplyView,
    ApplyReview,
    AvailabilityView,
    AvailabilityAddType,
    AvailabilityAddDates,
    AvailabilitySelect,
    AvailabilityDeleteConfirm,
    PlanSelect,
    PlanView,
    NotifySettings,
    UserSelect,
    UserEdit,
    UserEditName,
    UserEditOpsName,
    UserEditOption,
    UserDeleteConfirm,
    Saf100Select,
    Saf100View,
    Saf100Confirm,
    ForecastView,
]
