"""Enrollment Service models package."""

from services.enrollment_service.models.core import Enrollment
from services.enrollment_service.models.enums import EnrollmentStatus, RiskCategory

__all__ = [
    "Enrollment",
    "EnrollmentStatus",
    "RiskCategory",
]
