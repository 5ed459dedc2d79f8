import uuid
from datetime import date, datetime
from typing import Optional

from libs.common.config import get_settings
from libs.common.currency import percentage_of
from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.settlement_service.models.enums import (
    PayoutMethod,
    PayoutStatus,
    enum_values,
)
from sqlalchemy import Boolean, CheckConstraint, Date, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Integer, String, Text, Uuid, false
from sqlalchemy.orm import Mapped, mapped_column


class CoachPayout(Base):
    """Scheduled transfer to a coach for a period of work.

    Amounts are integer paise. ``gross_amount - tds_amount == net_amount``
    always holds. Rows are created by the revenue accrual process and
    mutated only by the settlement ledger; they are never deleted.
    """

    __tablename__ = "coach_payouts"
    __table_args__ = (
        CheckConstraint("tds_amount >= 0", name="ck_payout_tds_non_negative"),
        CheckConstraint(
            "tds_rate >= 0 AND tds_rate <= 100", name="ck_payout_tds_rate_range"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Coach reference (cross-service - coaches table is owned elsewhere)
    coach_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True, nullable=False)
    enrollment_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    payout_month: Mapped[str] = mapped_column(String(7), nullable=False)  # "2026-10"

    gross_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    tds_rate: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )  # percent applied when the payout was accrued
    tds_amount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    net_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), default="INR", nullable=False)

    status: Mapped[PayoutStatus] = mapped_column(
        SAEnum(
            PayoutStatus,
            name="payout_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=PayoutStatus.SCHEDULED,
        index=True,
        nullable=False,
    )
    scheduled_date: Mapped[date] = mapped_column(Date, index=True, nullable=False)

    # Payment tracking
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    payment_method: Mapped[Optional[PayoutMethod]] = mapped_column(
        SAEnum(
            PayoutMethod,
            name="payout_method_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=True,
    )
    payment_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    @classmethod
    def from_gross(
        cls, gross_amount: int, tds_rate_percent: Optional[int] = None, **fields
    ) -> "CoachPayout":
        """Build a payout whose withholding and net derive from the gross amount.

        The rate defaults to the configured ``TDS_RATE_PERCENT``.
        """
        if tds_rate_percent is None:
            tds_rate_percent = get_settings().TDS_RATE_PERCENT
        tds_amount = percentage_of(gross_amount, tds_rate_percent)
        return cls(
            gross_amount=gross_amount,
            tds_rate=tds_rate_percent,
            tds_amount=tds_amount,
            net_amount=gross_amount - tds_amount,
            **fields,
        )

    @property
    def amounts_consistent(self) -> bool:
        return (
            self.gross_amount >= 0
            and self.tds_amount >= 0
            and self.gross_amount - self.tds_amount == self.net_amount
            and self.tds_amount == percentage_of(self.gross_amount, self.tds_rate or 0)
        )

    def __repr__(self):
        return f"<CoachPayout {self.id} {self.payout_month} {self.status.value}>"


class TdsLedgerEntry(Base):
    """Tax withheld at source on one paid payout.

    ``deposited``, ``deposit_date`` and ``challan_number`` are filled in later
    by the compliance deposit process.
    """

    __tablename__ = "tds_ledger"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    payout_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("coach_payouts.id"), unique=True, nullable=False
    )
    coach_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True, nullable=False)

    financial_year: Mapped[str] = mapped_column(String(7), index=True, nullable=False)
    quarter: Mapped[str] = mapped_column(String(2), nullable=False)
    section: Mapped[str] = mapped_column(String(10), default="194J", nullable=False)

    gross_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    tds_rate: Mapped[int] = mapped_column(Integer, nullable=False)  # percent
    tds_amount: Mapped[int] = mapped_column(Integer, nullable=False)

    deposited: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False, server_default=false()
    )
    deposit_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    challan_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    def __repr__(self):
        return f"<TdsLedgerEntry {self.financial_year} {self.quarter} payout={self.payout_id}>"
