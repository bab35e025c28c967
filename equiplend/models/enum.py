# equiplend/models/enum.py
from enum import Enum


class BorrowStatus(str, Enum):
    SCHEDULED = "scheduled"           # reserved, waiting for hand-over
    BORROWED = "borrowed"
    PENDING_RETURN = "pending_return" # return submitted, waiting for staff check
    RETURNED = "returned"
    CANCELLED = "cancelled"


# a borrow in one of these still holds its asset units
ACTIVE_BORROW_STATUSES = frozenset({BorrowStatus.SCHEDULED, BorrowStatus.BORROWED, BorrowStatus.PENDING_RETURN})


class BorrowType(str, Enum):
    DURING_CLASS = "during-class"
    TEACHING = "teaching"
    OUTSIDE = "outside"


class EquipmentCategory(str, Enum):
    ASSET = "asset"
    CONSUMABLE = "consumable"


class AssetCondition(str, Enum):
    NORMAL = "normal"
    DAMAGED = "damaged"
    LOST = "lost"


class ConsumptionStatus(str, Enum):
    USED_UP = "used_up"
    PARTIALLY_USED = "partially_used"
    UNUSED = "unused"


class ReservationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    CANCELLED = "cancelled"
    RETURNED = "returned"


class CancelledByType(str, Enum):
    ADMIN = "admin"
    USER = "user"


class CancelPolicy(str, Enum):
    RETAIN = "retain"   # cancelled borrows keep their units unavailable
    RELEASE = "release" # cancelled borrows give units and stock back


class NotificationKind(str, Enum):
    BORROW_CREATED = "borrow_created"
    BORROW_CONFIRMED = "borrow_confirmed"
    BORROW_ACKNOWLEDGED = "borrow_acknowledged"
    RETURN_SUBMITTED = "return_submitted"
    RETURN_APPROVED = "return_approved"
    RETURN_REJECTED = "return_rejected"
    BORROW_CANCELLED = "borrow_cancelled"
    RESERVATION_REQUESTED = "reservation_requested"
    RESERVATION_APPROVED = "reservation_approved"
    RESERVATION_REJECTED = "reservation_rejected"
    RESERVATION_CANCELLED = "reservation_cancelled"


class NotificationStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class AdminAction(str, Enum):
    ADD = "add"
    EDIT = "edit"
    DELETE = "delete"
    UPDATE = "update"
    CONFIRM = "confirm"
    CANCEL = "cancel"
    ACKNOWLEDGE = "acknowledge"
    APPROVE = "approve"
    REJECT = "reject"


class AdminTarget(str, Enum):
    EQUIPMENT = "equipment"
    ROOM = "room"
    BORROW = "borrow"
