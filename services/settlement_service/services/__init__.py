"""Settlement Service business logic."""

from services.settlement_service.services.ledger import SettlementLedger
from services.settlement_service.services.reports import (
    list_payouts,
    payout_summary,
    payout_to_response,
    tds_summary,
)

__all__ = [
    "SettlementLedger",
    "list_payouts",
    "payout_summary",
    "payout_to_response",
    "tds_summary",
]
