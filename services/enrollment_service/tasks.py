"""Scheduled enrollment risk sweep.

Classification is derived state: the sweep recomputes categories and
reports them, it never writes a category back to the enrollment rows.
"""

from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from libs.db.session import get_session_factory
from services.enrollment_service.models import Enrollment, EnrollmentStatus, RiskCategory
from services.enrollment_service.schemas import RiskSummary
from services.enrollment_service.services.risk_classifier import (
    RiskPolicy,
    classify_batch,
    summarize,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)

ALERT_CATEGORIES = (RiskCategory.OVERDUE, RiskCategory.AT_RISK, RiskCategory.INACTIVE)


async def sweep_enrollment_risk(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    now: Optional[datetime] = None,
    policy: Optional[RiskPolicy] = None,
) -> RiskSummary:
    """Classify every active enrollment and log the ones needing attention."""
    session_factory = session_factory or get_session_factory()
    now = now or utc_now()
    policy = policy or RiskPolicy.from_settings()

    async with session_factory() as db:
        result = await db.execute(
            select(Enrollment).where(Enrollment.status == EnrollmentStatus.ACTIVE)
        )
        enrollments = result.scalars().all()

    classified = classify_batch(enrollments, now, policy, skip_invalid=True)
    for snapshot, outcome in classified:
        if outcome.category in ALERT_CATEGORIES:
            logger.info(
                f"Enrollment {snapshot.id} is {outcome.category.value}",
                extra={
                    "extra_fields": {
                        "days_remaining": outcome.days_remaining,
                        "days_since_last_session": outcome.days_since_last_session,
                    }
                },
            )

    summary = summarize(outcome for _, outcome in classified)
    logger.info(
        "Enrollment risk sweep finished",
        extra={"extra_fields": summary.model_dump()},
    )
    return summary
