"""Enum definitions for settlement service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class PayoutStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    PROCESSING = "processing"
    PAID = "paid"
    CANCELLED = "cancelled"


class PayoutMethod(str, enum.Enum):
    RAZORPAY_PAYOUT = "razorpay_payout"
    BANK_TRANSFER = "bank_transfer"
    MANUAL = "manual"


class SettlementAction(str, enum.Enum):
    MARK_PAID = "mark_paid"
    CANCEL = "cancel"


# Statuses each action may start from
ALLOWED_SOURCE_STATUSES = {
    SettlementAction.MARK_PAID: (PayoutStatus.SCHEDULED, PayoutStatus.PROCESSING),
    SettlementAction.CANCEL: (PayoutStatus.SCHEDULED,),
}

TARGET_STATUS = {
    SettlementAction.MARK_PAID: PayoutStatus.PAID,
    SettlementAction.CANCEL: PayoutStatus.CANCELLED,
}
