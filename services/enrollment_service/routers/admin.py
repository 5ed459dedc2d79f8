"""Admin completion dashboard: risk list, completion trigger, extensions."""

from uuid import UUID

from fastapi import APIRouter, Depends
from libs.audit.dependencies import get_audit_recorder
from libs.audit.recorder import AuditRecorder
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.common.datetime_utils import utc_now
from libs.common.errors import NotFoundError
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.enrollment_service.models import Enrollment
from services.enrollment_service.schemas import (
    ClassificationResult,
    CompleteRequest,
    CompletionResponse,
    EnrollmentRiskItem,
    EnrollmentSnapshot,
    ExtendRequest,
    ExtendResponse,
    RiskListResponse,
)
from services.enrollment_service.services import (
    CertificateIssuer,
    RiskPolicy,
    classify,
    classify_batch,
    complete_enrollment,
    extend_program,
    summarize,
)
from services.enrollment_service.services.certificates import get_certificate_issuer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

router = APIRouter(prefix="/admin/completion", tags=["admin-completion"])


def _risk_item(
    enrollment: Enrollment, snapshot: EnrollmentSnapshot, result: ClassificationResult
) -> EnrollmentRiskItem:
    return EnrollmentRiskItem(
        id=str(snapshot.id),
        child_id=str(enrollment.child_id) if enrollment.child_id else None,
        coach_id=str(enrollment.coach_id) if enrollment.coach_id else None,
        status=snapshot.status,
        risk_level=result.category,
        program_start=snapshot.program_start,
        program_end=snapshot.program_end,
        days_remaining=result.days_remaining,
        sessions_completed=snapshot.sessions_completed,
        sessions_total=snapshot.total_sessions,
        last_session_date=snapshot.last_session_date,
        days_since_last_session=result.days_since_last_session,
        has_initial_assessment=snapshot.has_initial_assessment,
        has_final_assessment=snapshot.has_final_assessment,
        final_assessment_sent=snapshot.final_assessment_sent,
        nps_submitted=snapshot.nps_submitted,
        nps_score=snapshot.nps_score,
        certificate_number=snapshot.certificate_number,
        completed_at=snapshot.completed_at,
    )


@router.get("/list", response_model=RiskListResponse)
async def list_enrollments(
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Every enrollment with its derived risk level, most urgent first."""
    result = await db.execute(select(Enrollment))
    enrollments = {e.id: e for e in result.scalars().all()}

    classified = classify_batch(
        enrollments.values(), utc_now(), RiskPolicy.from_settings(), skip_invalid=True
    )
    items = [
        _risk_item(enrollments[snapshot.id], snapshot, outcome)
        for snapshot, outcome in classified
    ]
    return RiskListResponse(
        enrollments=items,
        summary=summarize(outcome for _, outcome in classified),
    )


@router.get("/{enrollment_id}/risk", response_model=ClassificationResult)
async def get_enrollment_risk(
    enrollment_id: UUID,
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    enrollment = await db.get(Enrollment, enrollment_id)
    if not enrollment:
        raise NotFoundError(
            f"Enrollment {enrollment_id} not found", action="classify", ids=[enrollment_id]
        )
    return classify(enrollment, utc_now())


@router.post("/{enrollment_id}/complete", response_model=CompletionResponse)
async def trigger_completion(
    enrollment_id: UUID,
    data: CompleteRequest,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
    issuer: CertificateIssuer = Depends(get_certificate_issuer),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """Complete a program; below the session threshold this needs ``force``."""
    outcome = await complete_enrollment(
        db,
        enrollment_id=enrollment_id,
        force=data.force,
        actor=admin.actor,
        now=utc_now(),
        issuer=issuer,
        audit=audit,
    )
    return CompletionResponse(
        enrollment_id=str(outcome.enrollment_id),
        certificate_number=outcome.certificate_number,
        forced=outcome.forced,
        completed_at=outcome.completed_at,
    )


@router.post("/{enrollment_id}/extend", response_model=ExtendResponse)
async def extend_enrollment(
    enrollment_id: UUID,
    data: ExtendRequest,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    outcome = await extend_program(
        db,
        enrollment_id=enrollment_id,
        days=data.days,
        actor=admin.actor,
        now=utc_now(),
        audit=audit,
    )
    return ExtendResponse(
        enrollment_id=str(outcome.enrollment_id),
        previous_end=outcome.previous_end,
        new_end=outcome.new_end,
        extension_days=outcome.extension_days,
    )
