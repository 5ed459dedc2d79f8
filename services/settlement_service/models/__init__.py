"""Settlement Service models package."""

from services.settlement_service.models.core import CoachPayout, TdsLedgerEntry
from services.settlement_service.models.enums import (
    ALLOWED_SOURCE_STATUSES,
    TARGET_STATUS,
    PayoutMethod,
    PayoutStatus,
    SettlementAction,
)

__all__ = [
    "ALLOWED_SOURCE_STATUSES",
    "CoachPayout",
    "PayoutMethod",
    "PayoutStatus",
    "SettlementAction",
    "TARGET_STATUS",
    "TdsLedgerEntry",
]
