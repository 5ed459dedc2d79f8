"""Enrollment engine services."""

from services.enrollment_service.services.certificates import CertificateIssuer
from services.enrollment_service.services.completion import (
    CompletionResult,
    ExtensionResult,
    complete_enrollment,
    extend_program,
)
from services.enrollment_service.services.risk_classifier import (
    RiskPolicy,
    classify,
    classify_batch,
    summarize,
)

__all__ = [
    "CertificateIssuer",
    "CompletionResult",
    "ExtensionResult",
    "RiskPolicy",
    "classify",
    "classify_batch",
    "complete_enrollment",
    "extend_program",
    "summarize",
]
