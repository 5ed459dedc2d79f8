import uuid
from datetime import datetime

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from sqlalchemy import JSON, DateTime, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class AuditLog(Base):
    """Compliance trail of admin actions on enrollments and payouts."""

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    actor: Mapped[str] = mapped_column(String, index=True, nullable=False)
    action: Mapped[str] = mapped_column(String(64), index=True, nullable=False)

    target_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    # Integer paise figures keyed by name, e.g. {"total_amount": 900000}
    amounts: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    def __repr__(self):
        return f"<AuditLog {self.action} by {self.actor}>"
