import enum


class Role(str, enum.Enum):
    STUDENT = "STUDENT"
    FACULTY = "FACULTY"
    STAFF = "STAFF"
    INCHARGE = "INCHARGE"
    ADMIN = "ADMIN"
    PROCUREMENT = "PROCUREMENT"


class ItemStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    ISSUED = "ISSUED"
    MAINTENANCE = "MAINTENANCE"
    PENDING_REPLACEMENT = "PENDING_REPLACEMENT"


class ItemCondition(str, enum.Enum):
    NEW = "NEW"
    GOOD = "GOOD"
    FAIR = "FAIR"
    DAMAGED = "DAMAGED"
    UNDER_REPAIR = "UNDER_REPAIR"


class RequestStatus(str, enum.Enum):
    """
    Borrow request lifecycle.

        PENDING -> APPROVED | REJECTED   (incharge/admin of the item's department)
        PENDING -> CANCELLED             (requesting user)
    """

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class TransferStatus(str, enum.Enum):
    """
    Department-to-department transfer lifecycle.

        PENDING -> APPROVED -> COMPLETED
        PENDING -> REJECTED | CANCELLED
    """

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


DAMAGE_CONDITIONS = {ItemCondition.DAMAGED, ItemCondition.UNDER_REPAIR}
STAFF_ROLES = {Role.INCHARGE, Role.ADMIN}
