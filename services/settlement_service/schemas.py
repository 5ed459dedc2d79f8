"""Schemas for coach payout settlement and TDS reporting."""

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field

from services.settlement_service.models import (
    PayoutMethod,
    PayoutStatus,
    SettlementAction,
)


class PaymentMeta(BaseModel):
    """How a batch was paid; recorded on every payout it settles."""

    payment_method: PayoutMethod = PayoutMethod.MANUAL
    payment_reference: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=500)


class ProcessPayoutsRequest(BaseModel):
    """Batch settlement request."""

    action: SettlementAction
    # duplicates are collapsed and the configured batch cap applied by the ledger
    payout_ids: list[uuid.UUID] = Field(..., min_length=1)
    payment_method: Optional[PayoutMethod] = None
    payment_reference: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=500)

    def payment_meta(self) -> PaymentMeta:
        return PaymentMeta(
            payment_method=self.payment_method or PayoutMethod.MANUAL,
            payment_reference=self.payment_reference,
            notes=self.notes,
        )


class SettlementResult(BaseModel):
    action: SettlementAction
    updated_count: int
    total_amount: int  # Σ net, in paise
    ledger_entries_created: int
    payout_ids: list[str]


class PayoutResponse(BaseModel):
    """Response for a coach payout."""

    id: str
    coach_id: str
    enrollment_id: Optional[str] = None
    payout_month: str

    gross_amount: int
    tds_amount: int
    net_amount: int
    currency: str

    status: PayoutStatus
    scheduled_date: date
    paid_at: Optional[datetime] = None
    payment_method: Optional[PayoutMethod] = None
    payment_reference: Optional[str] = None
    notes: Optional[str] = None

    created_at: datetime
    updated_at: datetime


class PayoutListResponse(BaseModel):
    """Paginated list of payouts."""

    items: list[PayoutResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class AmountCount(BaseModel):
    amount: int  # in paise
    count: int


class TdsToDeposit(BaseModel):
    amount: int  # in paise
    quarter: str
    financial_year: str


class PayoutSummary(BaseModel):
    """Operator dashboard totals."""

    due_now: AmountCount
    pending: AmountCount
    paid_this_month: AmountCount
    tds_to_deposit: TdsToDeposit


class TdsQuarterSummary(BaseModel):
    quarter: str
    deducted: int
    deposited: int
    pending: int
    due_date: date
    status: str  # "n/a" | "pending" | "complete"


class TdsCoachSummary(BaseModel):
    coach_id: str
    total_gross: int
    tds_deducted: int
    entries: int


class TdsTotals(BaseModel):
    total_deducted: int
    total_deposited: int
    total_pending: int


class TdsSummaryResponse(BaseModel):
    financial_year: str
    quarterly_summary: list[TdsQuarterSummary]
    coach_wise: list[TdsCoachSummary]
    totals: TdsTotals
