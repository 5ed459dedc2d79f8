"""Enum definitions for enrollment service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class EnrollmentStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class RiskCategory(str, enum.Enum):
    """Derived health label. Declaration order is the operator display order."""

    OVERDUE = "overdue"
    AT_RISK = "at_risk"
    INACTIVE = "inactive"
    READY = "ready"
    ON_TRACK = "on_track"
    COMPLETED = "completed"

    @property
    def priority(self) -> int:
        return list(RiskCategory).index(self)
