from enum import Enum


class FeeFrequency(str, Enum):
    MONTHLY = "monthly"
    ONE_TIME = "one-time"
    QUARTERLY = "quarterly"
    SEMI_ANNUAL = "semi-annual"
    ANNUAL = "annual"
    CUSTOM = "custom"


# Frequencies that never enter the monthly arrears buckets
OTHER_CHARGE_FREQUENCIES = {FeeFrequency.ONE_TIME.value, FeeFrequency.CUSTOM.value}


class AdjustmentType(str, Enum):
    """How a discount or late-fee rule value is applied."""

    FIXED = "fixed"
    PERCENTAGE = "percentage"


class FeeStructureStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class FeeCollectionStatus(str, Enum):
    """Persisted ledger status. Overdue is derived at read time, never stored."""

    pending = "pending"
    partial = "partial"
    paid = "paid"
    cancelled = "cancelled"


OVERDUE = "overdue"
UNPAID = "unpaid"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CHEQUE = "cheque"
    ONLINE = "online"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"


class ReminderType(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    NOTIFICATION = "notification"


class PromoDiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class PromoTargetType(str, Enum):
    ALL = "all"
    SPECIFIC = "specific"
    CATEGORY = "category"
