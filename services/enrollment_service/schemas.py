"""Pydantic schemas for the enrollment service."""

import uuid
from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from libs.common.config import get_settings
from libs.common.errors import ValidationError
from services.enrollment_service.models import EnrollmentStatus, RiskCategory


class EnrollmentSnapshot(BaseModel):
    """Immutable view of the enrollment facts the classifier reads.

    Built once at the storage boundary; business logic trusts it afterwards.
    """

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: uuid.UUID
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE
    program_start: date
    program_end: date
    total_sessions: int = Field(
        default_factory=lambda: get_settings().DEFAULT_TOTAL_SESSIONS, gt=0
    )
    sessions_completed: int = Field(default=0, ge=0)
    last_session_date: Optional[date] = None

    has_initial_assessment: bool = False
    has_final_assessment: bool = False
    final_assessment_sent: bool = False
    nps_submitted: bool = False
    nps_score: Optional[int] = Field(default=None, ge=0, le=10)

    completed_at: Optional[datetime] = None
    certificate_number: Optional[str] = None
    completion_forced: bool = False

    @model_validator(mode="after")
    def check_invariants(self) -> "EnrollmentSnapshot":
        if self.program_end < self.program_start:
            raise ValueError("program_end is before program_start")
        if (self.completed_at is None) != (self.certificate_number is None):
            raise ValueError(
                "completed_at and certificate_number must both be set or both be empty"
            )
        return self

    @classmethod
    def from_record(cls, record: Any) -> "EnrollmentSnapshot":
        """Snapshot an ORM row or mapping, raising the engine's ValidationError."""
        try:
            if isinstance(record, dict):
                return cls.model_validate(record)
            return cls.model_validate(record, from_attributes=True)
        except PydanticValidationError as exc:
            record_id = (
                record.get("id") if isinstance(record, dict) else getattr(record, "id", None)
            )
            raise ValidationError(
                f"Malformed enrollment {record_id}: "
                + "; ".join(err["msg"] for err in exc.errors()),
                action="classify",
                ids=[record_id] if record_id else [],
            ) from exc


class ClassificationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: RiskCategory
    days_remaining: int
    days_since_last_session: Optional[int] = None


class EnrollmentRiskItem(BaseModel):
    """One row of the operator completion dashboard."""

    id: str
    child_id: Optional[str] = None
    coach_id: Optional[str] = None
    status: EnrollmentStatus
    risk_level: RiskCategory
    program_start: date
    program_end: date
    days_remaining: int
    sessions_completed: int
    sessions_total: int
    last_session_date: Optional[date] = None
    days_since_last_session: Optional[int] = None
    has_initial_assessment: bool
    has_final_assessment: bool
    final_assessment_sent: bool
    nps_submitted: bool
    nps_score: Optional[int] = None
    certificate_number: Optional[str] = None
    completed_at: Optional[datetime] = None


class RiskSummary(BaseModel):
    total: int = 0
    overdue: int = 0
    at_risk: int = 0
    inactive: int = 0
    ready: int = 0
    on_track: int = 0
    completed: int = 0


class RiskListResponse(BaseModel):
    enrollments: list[EnrollmentRiskItem]
    summary: RiskSummary


class CompleteRequest(BaseModel):
    force: bool = False


class CompletionResponse(BaseModel):
    enrollment_id: str
    certificate_number: str
    forced: bool
    completed_at: datetime


class ExtendRequest(BaseModel):
    # upper bound is MAX_EXTENSION_DAYS, checked by extend_program
    days: int = Field(..., ge=1)


class ExtendResponse(BaseModel):
    enrollment_id: str
    previous_end: date
    new_end: date
    extension_days: int
