"""Enrollment completion and program extension."""

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from libs.audit.recorder import AuditEntry, AuditRecorder, record_safely
from libs.common.config import get_settings
from libs.common.errors import (
    InsufficientSessionsError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from libs.common.logging import get_logger
from services.enrollment_service.models import Enrollment, EnrollmentStatus
from services.enrollment_service.services.certificates import CertificateIssuer
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass(frozen=True)
class CompletionResult:
    enrollment_id: uuid.UUID
    certificate_number: str
    forced: bool
    completed_at: datetime


@dataclass(frozen=True)
class ExtensionResult:
    enrollment_id: uuid.UUID
    previous_end: date
    new_end: date
    extension_days: int


async def _lock_enrollment(
    db: AsyncSession, enrollment_id: uuid.UUID, action: str
) -> Enrollment:
    result = await db.execute(
        select(Enrollment).where(Enrollment.id == enrollment_id).with_for_update()
    )
    enrollment = result.scalar_one_or_none()
    if enrollment is None:
        raise NotFoundError(
            f"Enrollment {enrollment_id} not found", action=action, ids=[enrollment_id]
        )
    return enrollment


async def complete_enrollment(
    db: AsyncSession,
    *,
    enrollment_id: uuid.UUID,
    force: bool,
    actor: str,
    now: datetime,
    issuer: CertificateIssuer,
    audit: Optional[AuditRecorder] = None,
) -> CompletionResult:
    """Mark an enrollment completed and attach a certificate number.

    The certificate number and the status change commit together; if the
    issuer fails the transaction is rolled back and nothing changes.
    """
    enrollment = await _lock_enrollment(db, enrollment_id, "complete")

    if enrollment.status == EnrollmentStatus.COMPLETED:
        await db.rollback()
        raise InvalidStateError(
            f"Enrollment {enrollment_id} is already completed",
            action="complete",
            ids=[enrollment_id],
        )

    sessions_completed = enrollment.sessions_completed
    total_sessions = enrollment.total_sessions
    short = sessions_completed < total_sessions
    if short and not force:
        await db.rollback()
        raise InsufficientSessionsError(enrollment_id, sessions_completed, total_sessions)

    try:
        certificate_number = issuer.issue(enrollment_id, now)
    except Exception as exc:
        await db.rollback()
        raise PersistenceError(
            f"Certificate generation failed for enrollment {enrollment_id}",
            phase="certificate",
            action="complete",
            ids=[enrollment_id],
        ) from exc

    enrollment.status = EnrollmentStatus.COMPLETED
    enrollment.completed_at = now
    enrollment.certificate_number = certificate_number
    enrollment.completion_forced = short
    enrollment.updated_at = now

    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise PersistenceError(
            f"Failed to persist completion of enrollment {enrollment_id}",
            phase="status_update",
            action="complete",
            ids=[enrollment_id],
        ) from exc

    logger.info(
        f"Enrollment {enrollment_id} completed",
        extra={
            "extra_fields": {
                "certificate_number": certificate_number,
                "forced": short,
                "sessions": f"{sessions_completed}/{total_sessions}",
            }
        },
    )

    await record_safely(
        audit,
        AuditEntry(
            actor=actor,
            action="enrollment_completed",
            target_ids=[str(enrollment_id)],
            timestamp=now,
            details={
                "certificate_number": certificate_number,
                "forced": short,
                "sessions_completed": sessions_completed,
                "total_sessions": total_sessions,
            },
        ),
    )

    return CompletionResult(
        enrollment_id=enrollment_id,
        certificate_number=certificate_number,
        forced=short,
        completed_at=now,
    )


async def extend_program(
    db: AsyncSession,
    *,
    enrollment_id: uuid.UUID,
    days: int,
    actor: str,
    now: datetime,
    audit: Optional[AuditRecorder] = None,
) -> ExtensionResult:
    """Push the program end date out by ``days`` (1..MAX_EXTENSION_DAYS)."""
    max_days = get_settings().MAX_EXTENSION_DAYS
    if not 1 <= days <= max_days:
        raise ValidationError(
            f"Extension must be between 1 and {max_days} days, got {days}",
            action="extend",
            ids=[enrollment_id],
        )

    enrollment = await _lock_enrollment(db, enrollment_id, "extend")
    if enrollment.status == EnrollmentStatus.COMPLETED:
        await db.rollback()
        raise InvalidStateError(
            f"Enrollment {enrollment_id} is completed and cannot be extended",
            action="extend",
            ids=[enrollment_id],
        )

    previous_end = enrollment.program_end
    enrollment.program_end = previous_end + timedelta(days=days)
    enrollment.extension_days = (enrollment.extension_days or 0) + days
    enrollment.updated_at = now
    new_end = enrollment.program_end
    total_extension = enrollment.extension_days

    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise PersistenceError(
            f"Failed to extend enrollment {enrollment_id}",
            phase="status_update",
            action="extend",
            ids=[enrollment_id],
        ) from exc

    logger.info(f"Enrollment {enrollment_id} extended by {days} days to {new_end}")

    await record_safely(
        audit,
        AuditEntry(
            actor=actor,
            action="enrollment_extended",
            target_ids=[str(enrollment_id)],
            timestamp=now,
            details={
                "days": days,
                "previous_end": previous_end.isoformat(),
                "new_end": new_end.isoformat(),
            },
        ),
    )

    return ExtensionResult(
        enrollment_id=enrollment_id,
        previous_end=previous_end,
        new_end=new_end,
        extension_days=total_extension,
    )
