import uuid
from datetime import date, datetime
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.enrollment_service.models.enums import EnrollmentStatus, enum_values
from sqlalchemy import Boolean, CheckConstraint, Date, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column


def _default_total_sessions() -> int:
    return get_settings().DEFAULT_TOTAL_SESSIONS


class Enrollment(Base):
    """One child's coaching program.

    Session counts and the last-session date are maintained by the session
    logging subsystem; this service only reads them. The risk category is
    never stored here, it is derived on every read.
    """

    __tablename__ = "enrollments"
    __table_args__ = (
        CheckConstraint("program_end >= program_start", name="ck_enrollment_window"),
        CheckConstraint("total_sessions > 0", name="ck_enrollment_total_sessions"),
        CheckConstraint("sessions_completed >= 0", name="ck_enrollment_sessions_done"),
        CheckConstraint("nps_score BETWEEN 0 AND 10", name="ck_enrollment_nps_range"),
        CheckConstraint(
            "(completed_at IS NULL) = (certificate_number IS NULL)",
            name="ck_enrollment_completion_markers",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Cross-service references (children / coaches tables are owned elsewhere)
    child_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, index=True, nullable=True)
    coach_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, index=True, nullable=True)

    # Program window
    program_start: Mapped[date] = mapped_column(Date, nullable=False)
    program_end: Mapped[date] = mapped_column(Date, index=True, nullable=False)
    extension_days: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False, server_default="0"
    )

    # Contracted work
    total_sessions: Mapped[int] = mapped_column(
        Integer, default=_default_total_sessions, nullable=False
    )
    sessions_completed: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False, server_default="0"
    )
    last_session_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Assessment flags
    has_initial_assessment: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False, server_default="false"
    )
    has_final_assessment: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False, server_default="false"
    )
    final_assessment_sent: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False, server_default="false"
    )
    nps_submitted: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False, server_default="false"
    )
    nps_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Terminal markers
    status: Mapped[EnrollmentStatus] = mapped_column(
        SAEnum(
            EnrollmentStatus,
            name="enrollment_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=EnrollmentStatus.ACTIVE,
        nullable=False,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    certificate_number: Mapped[Optional[str]] = mapped_column(
        String(50), unique=True, nullable=True
    )
    completion_forced: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False, server_default="false"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    def __repr__(self):
        return f"<Enrollment {self.id} {self.status.value}>"
