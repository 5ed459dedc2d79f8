"""Enrollment risk classification.

The category is a pure function of the stored enrollment facts and an
injected ``now``. Nothing here touches the database or caches results, so
repeated calls with the same inputs always agree.

Decision list (first match wins):

1. completed status            -> completed
2. past end, sessions short    -> overdue   (days_remaining < 0)
3. end within the at-risk window -> at_risk (0 <= days_remaining <= window)
4. idle beyond the threshold   -> inactive
5. all contracted sessions done -> ready
6. anything else               -> on_track
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional, Union

from libs.common.config import Settings, get_settings
from libs.common.datetime_utils import business_date
from libs.common.errors import ValidationError
from libs.common.logging import get_logger
from services.enrollment_service.models import EnrollmentStatus, RiskCategory
from services.enrollment_service.schemas import (
    ClassificationResult,
    EnrollmentSnapshot,
    RiskSummary,
)


logger = get_logger(__name__)


@dataclass(frozen=True)
class RiskPolicy:
    """Thresholds behind the decision list."""

    at_risk_window_days: int = 7
    inactivity_threshold_days: int = 14
    timezone: str = "Asia/Kolkata"

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RiskPolicy":
        settings = settings or get_settings()
        return cls(
            at_risk_window_days=settings.AT_RISK_WINDOW_DAYS,
            inactivity_threshold_days=settings.INACTIVITY_THRESHOLD_DAYS,
            timezone=settings.TIMEZONE,
        )


EnrollmentLike = Union[EnrollmentSnapshot, Any]


def _as_snapshot(enrollment: EnrollmentLike) -> EnrollmentSnapshot:
    if isinstance(enrollment, EnrollmentSnapshot):
        return enrollment
    return EnrollmentSnapshot.from_record(enrollment)


def classify(
    enrollment: EnrollmentLike,
    now: datetime,
    policy: Optional[RiskPolicy] = None,
) -> ClassificationResult:
    """Derive the risk category and supporting day counts for one enrollment.

    Raises ``ValidationError`` when the record is malformed (e.g. the program
    ends before it starts).
    """
    policy = policy or RiskPolicy.from_settings()
    snapshot = _as_snapshot(enrollment)
    today = business_date(now, policy.timezone)

    days_remaining = (snapshot.program_end - today).days
    days_since_last_session = (
        (today - snapshot.last_session_date).days
        if snapshot.last_session_date is not None
        else None
    )

    def result(category: RiskCategory) -> ClassificationResult:
        return ClassificationResult(
            category=category,
            days_remaining=days_remaining,
            days_since_last_session=days_since_last_session,
        )

    if snapshot.status == EnrollmentStatus.COMPLETED:
        return result(RiskCategory.COMPLETED)

    sessions_short = snapshot.sessions_completed < snapshot.total_sessions

    if days_remaining < 0 and sessions_short:
        return result(RiskCategory.OVERDUE)

    if 0 <= days_remaining <= policy.at_risk_window_days:
        return result(RiskCategory.AT_RISK)

    if (
        days_since_last_session is not None
        and days_since_last_session > policy.inactivity_threshold_days
    ):
        return result(RiskCategory.INACTIVE)

    if not sessions_short:
        return result(RiskCategory.READY)

    return result(RiskCategory.ON_TRACK)


def risk_sort_key(
    category: RiskCategory, snapshot: EnrollmentSnapshot
) -> tuple[int, Any, str]:
    """Most time-critical first; ties by earliest program end."""
    return (category.priority, snapshot.program_end, str(snapshot.id))


def classify_batch(
    enrollments: Iterable[EnrollmentLike],
    now: datetime,
    policy: Optional[RiskPolicy] = None,
    *,
    skip_invalid: bool = False,
) -> list[tuple[EnrollmentSnapshot, ClassificationResult]]:
    """Classify many enrollments and return them in operator display order.

    With ``skip_invalid`` a malformed record is logged and left out instead of
    failing the whole batch.
    """
    policy = policy or RiskPolicy.from_settings()
    classified = []
    for enrollment in enrollments:
        try:
            snapshot = _as_snapshot(enrollment)
        except ValidationError as e:
            if not skip_invalid:
                raise
            logger.warning(f"Skipping malformed enrollment: {e.message}")
            continue
        classified.append((snapshot, classify(snapshot, now, policy)))
    classified.sort(key=lambda pair: risk_sort_key(pair[1].category, pair[0]))
    return classified


def summarize(results: Iterable[ClassificationResult]) -> RiskSummary:
    counts = {category.value: 0 for category in RiskCategory}
    total = 0
    for item in results:
        counts[item.category.value] += 1
        total += 1
    return RiskSummary(total=total, **counts)
