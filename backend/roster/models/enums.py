import enum


class UsrType(str, enum.Enum):
    ACTIVE = "ACTIVE"
    STAFF = "STAFF"
    NS = "NS"


class RoleType(str, enum.Enum):
    PILOT = "PILOT"
    ARO = "ARO"


class Ict(str, enum.Enum):
    LIVE = "LIVE"
    SIMS = "SIMS"
    OTHER = "OTHER"
