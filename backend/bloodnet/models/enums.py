from enum import Enum


class BloodGroup(str, Enum):
    A_POSITIVE = "A+"
    A_NEGATIVE = "A-"
    B_POSITIVE = "B+"
    B_NEGATIVE = "B-"
    AB_POSITIVE = "AB+"
    AB_NEGATIVE = "AB-"
    O_POSITIVE = "O+"
    O_NEGATIVE = "O-"


BLOOD_GROUPS = [group.value for group in BloodGroup]


class InventorySource(str, Enum):
    DONATION = "donation"
    PURCHASE = "purchase"
    TRANSFER = "transfer"


class DonationType(str, Enum):
    WHOLE_BLOOD = "whole_blood"
    PLASMA = "plasma"
    PLATELETS = "platelets"
    DOUBLE_RED_CELLS = "double_red_cells"


class DonationStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class UrgencyLevel(str, Enum):
    CRITICAL = "critical"
    URGENT = "urgent"
    NORMAL = "normal"


URGENCY_RANK = {
    UrgencyLevel.CRITICAL: 0,
    UrgencyLevel.URGENT: 1,
    UrgencyLevel.NORMAL: 2,
}


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
