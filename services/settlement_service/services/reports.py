"""Read-only payout and TDS reporting for the operator dashboard."""

import math
import uuid
from datetime import date, datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from libs.common.config import get_settings
from libs.common.datetime_utils import business_date, utc_now
from libs.common.errors import ValidationError
from libs.common.fiscal import (
    QUARTERS,
    deposit_due_date,
    fiscal_period,
    is_valid_fiscal_year,
)
from services.settlement_service.models import CoachPayout, PayoutStatus, TdsLedgerEntry
from services.settlement_service.schemas import (
    AmountCount,
    PayoutListResponse,
    PayoutResponse,
    PayoutSummary,
    TdsCoachSummary,
    TdsQuarterSummary,
    TdsSummaryResponse,
    TdsToDeposit,
    TdsTotals,
)
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

UNPAID_STATUSES = (PayoutStatus.SCHEDULED, PayoutStatus.PROCESSING)


def payout_to_response(payout: CoachPayout) -> PayoutResponse:
    return PayoutResponse(
        id=str(payout.id),
        coach_id=str(payout.coach_id),
        enrollment_id=str(payout.enrollment_id) if payout.enrollment_id else None,
        payout_month=payout.payout_month,
        gross_amount=payout.gross_amount,
        tds_amount=payout.tds_amount,
        net_amount=payout.net_amount,
        currency=payout.currency,
        status=payout.status,
        scheduled_date=payout.scheduled_date,
        paid_at=payout.paid_at,
        payment_method=payout.payment_method,
        payment_reference=payout.payment_reference,
        notes=payout.notes,
        created_at=payout.created_at,
        updated_at=payout.updated_at,
    )


async def list_payouts(
    db: AsyncSession,
    *,
    status: Optional[PayoutStatus] = None,
    coach_id: Optional[uuid.UUID] = None,
    month: Optional[str] = None,
    page: int = 1,
    page_size: int = 20,
) -> PayoutListResponse:
    """Payouts matching the filters, most recently scheduled first."""
    query = select(CoachPayout)
    if status:
        query = query.where(CoachPayout.status == status)
    if coach_id:
        query = query.where(CoachPayout.coach_id == coach_id)
    if month:
        query = query.where(CoachPayout.payout_month == month)

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0

    query = (
        query.order_by(CoachPayout.scheduled_date.desc(), CoachPayout.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(query)

    return PayoutListResponse(
        items=[payout_to_response(p) for p in result.scalars().all()],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size) if total else 0,
    )


def _month_start_utc(today: date, tz_name: str) -> datetime:
    start = datetime.combine(today.replace(day=1), time.min, tzinfo=ZoneInfo(tz_name))
    return start.astimezone(timezone.utc)


async def _amount_count(db: AsyncSession, *conditions) -> AmountCount:
    row = (
        await db.execute(
            select(
                func.coalesce(func.sum(CoachPayout.net_amount), 0),
                func.count(CoachPayout.id),
            ).where(*conditions)
        )
    ).one()
    return AmountCount(amount=row[0], count=row[1])


async def payout_summary(
    db: AsyncSession, now: Optional[datetime] = None
) -> PayoutSummary:
    """Due now, pending, paid this month, and TDS awaiting deposit this quarter."""
    tz_name = get_settings().TIMEZONE
    now = now or utc_now()
    today = business_date(now, tz_name)
    period = fiscal_period(today)

    due_now = await _amount_count(
        db,
        CoachPayout.status.in_(UNPAID_STATUSES),
        CoachPayout.scheduled_date <= today,
    )
    pending = await _amount_count(
        db,
        CoachPayout.status.in_(UNPAID_STATUSES),
        CoachPayout.scheduled_date > today,
    )
    paid_this_month = await _amount_count(
        db,
        CoachPayout.status == PayoutStatus.PAID,
        CoachPayout.paid_at >= _month_start_utc(today, tz_name),
    )

    tds_pending = await db.scalar(
        select(func.coalesce(func.sum(TdsLedgerEntry.tds_amount), 0)).where(
            TdsLedgerEntry.deposited.is_(False),
            TdsLedgerEntry.financial_year == period.financial_year,
            TdsLedgerEntry.quarter == period.quarter,
        )
    )

    return PayoutSummary(
        due_now=due_now,
        pending=pending,
        paid_this_month=paid_this_month,
        tds_to_deposit=TdsToDeposit(
            amount=tds_pending or 0,
            quarter=period.quarter,
            financial_year=period.financial_year,
        ),
    )


def _quarter_status(deducted: int, pending: int) -> str:
    if deducted == 0:
        return "n/a"
    return "complete" if pending == 0 else "pending"


async def tds_summary(db: AsyncSession, financial_year: str) -> TdsSummaryResponse:
    """Quarterly and coach-wise withholding for one fiscal year."""
    if not is_valid_fiscal_year(financial_year):
        raise ValidationError(
            f"Invalid financial year {financial_year!r}; use YYYY-YY (e.g. 2026-27)",
            action="tds_summary",
        )

    deposited_amount = case(
        (TdsLedgerEntry.deposited.is_(True), TdsLedgerEntry.tds_amount), else_=0
    )
    quarter_rows = await db.execute(
        select(
            TdsLedgerEntry.quarter,
            func.coalesce(func.sum(TdsLedgerEntry.tds_amount), 0),
            func.coalesce(func.sum(deposited_amount), 0),
        )
        .where(TdsLedgerEntry.financial_year == financial_year)
        .group_by(TdsLedgerEntry.quarter)
    )
    by_quarter = {row[0]: (row[1], row[2]) for row in quarter_rows.all()}

    quarterly = []
    for quarter in QUARTERS:
        deducted, deposited = by_quarter.get(quarter, (0, 0))
        pending = deducted - deposited
        quarterly.append(
            TdsQuarterSummary(
                quarter=quarter,
                deducted=deducted,
                deposited=deposited,
                pending=pending,
                due_date=deposit_due_date(quarter, financial_year),
                status=_quarter_status(deducted, pending),
            )
        )

    coach_rows = await db.execute(
        select(
            TdsLedgerEntry.coach_id,
            func.sum(TdsLedgerEntry.gross_amount),
            func.sum(TdsLedgerEntry.tds_amount),
            func.count(TdsLedgerEntry.id),
        )
        .where(TdsLedgerEntry.financial_year == financial_year)
        .group_by(TdsLedgerEntry.coach_id)
        .order_by(func.sum(TdsLedgerEntry.tds_amount).desc())
    )
    coach_wise = [
        TdsCoachSummary(
            coach_id=str(row[0]),
            total_gross=row[1],
            tds_deducted=row[2],
            entries=row[3],
        )
        for row in coach_rows.all()
    ]

    total_deducted = sum(q.deducted for q in quarterly)
    total_deposited = sum(q.deposited for q in quarterly)
    return TdsSummaryResponse(
        financial_year=financial_year,
        quarterly_summary=quarterly,
        coach_wise=coach_wise,
        totals=TdsTotals(
            total_deducted=total_deducted,
            total_deposited=total_deposited,
            total_pending=total_deducted - total_deposited,
        ),
    )
