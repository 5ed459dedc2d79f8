"""Admin payout settlement and TDS reporting routes."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from libs.audit.dependencies import get_audit_recorder
from libs.audit.recorder import AuditRecorder
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.common.datetime_utils import business_date, utc_now
from libs.common.fiscal import fiscal_year_label
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.settlement_service.models import PayoutStatus
from services.settlement_service.schemas import (
    PayoutListResponse,
    PayoutSummary,
    ProcessPayoutsRequest,
    SettlementResult,
    TdsSummaryResponse,
)
from services.settlement_service.services import (
    SettlementLedger,
    list_payouts,
    payout_summary,
    tds_summary,
)
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin-payouts"])


def get_settlement_ledger(
    db: AsyncSession = Depends(get_async_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> SettlementLedger:
    return SettlementLedger(db, audit=audit)


@router.get("/payouts", response_model=PayoutListResponse)
async def get_payouts(
    status: Optional[PayoutStatus] = None,
    coach_id: Optional[UUID] = None,
    month: Optional[str] = Query(None, pattern=r"^\d{4}-(0[1-9]|1[0-2])$"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """List payouts with optional status, coach and month (YYYY-MM) filters."""
    return await list_payouts(
        db,
        status=status,
        coach_id=coach_id,
        month=month,
        page=page,
        page_size=page_size,
    )


@router.get("/payouts/summary", response_model=PayoutSummary)
async def get_payouts_summary(
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await payout_summary(db, utc_now())


@router.post("/payouts/process", response_model=SettlementResult)
async def process_payouts(
    data: ProcessPayoutsRequest,
    admin: AuthUser = Depends(require_admin),
    ledger: SettlementLedger = Depends(get_settlement_ledger),
):
    """Mark a batch of payouts as paid, or cancel them.

    Marking paid records one TDS ledger entry per payout with withholding.
    """
    result = await ledger.process_batch(
        data.payout_ids,
        data.action,
        actor=admin.actor,
        payment_meta=data.payment_meta(),
        now=utc_now(),
    )
    logger.info(
        f"Admin {admin.actor} processed {result.updated_count} payouts ({result.action.value})"
    )
    return result


@router.get("/tds", response_model=TdsSummaryResponse)
async def get_tds_summary(
    fy: Optional[str] = Query(None, description="Financial year, e.g. 2026-27"),
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Quarterly TDS deducted/deposited/pending and coach-wise totals."""
    financial_year = fy or fiscal_year_label(business_date(utc_now()))
    return await tds_summary(db, financial_year)
