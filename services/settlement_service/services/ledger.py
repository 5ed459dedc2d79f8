"""Batch settlement of coach payouts with TDS ledger bookkeeping.

``mark_paid`` is a two-phase write:

1. insert one ``TdsLedgerEntry`` per payout with non-zero withholding
2. move every payout to ``paid`` with an ``UPDATE ... WHERE status IN (...)``
   guard

If phase 2 fails, the entries from phase 1 are deleted by id before the
error surfaces. Ledger-first ordering means the worst transient state is an
orphan ledger row pointing at an unpaid payout, never a paid payout with no
tax entry. Orphans left behind by a failed compensation are removed by
``reconcile_orphan_entries``.

Both phases normally share one database transaction, so a rollback already
undoes phase 1 and compensation deletes nothing. With ``isolated_phases=True``
phase 1 commits on its own, for stores that cannot span both tables in a
single transaction. Phase 2 then confirms its entries still exist before it
commits, and reconciliation leaves entries younger than
``ORPHAN_GRACE_MINUTES`` alone.
"""

import uuid
from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence, Union

from libs.audit.recorder import AuditEntry, AuditRecorder, record_safely
from libs.common.config import get_settings
from libs.common.datetime_utils import business_date, utc_now
from libs.common.errors import InvalidStateError, PersistenceError, ValidationError
from libs.common.fiscal import FiscalPeriod, fiscal_period
from libs.common.logging import get_logger
from services.settlement_service.models import (
    ALLOWED_SOURCE_STATUSES,
    TARGET_STATUS,
    CoachPayout,
    PayoutStatus,
    SettlementAction,
    TdsLedgerEntry,
)
from services.settlement_service.schemas import PaymentMeta, SettlementResult
from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


class SettlementLedger:
    """Sole writer of payout status and TDS ledger rows."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        audit: Optional[AuditRecorder] = None,
        tds_section: Optional[str] = None,
        batch_limit: Optional[int] = None,
        timezone: Optional[str] = None,
        isolated_phases: bool = False,
        orphan_grace_minutes: Optional[int] = None,
    ):
        settings = get_settings()
        self._db = db
        self._audit = audit
        self.tds_section = tds_section or settings.TDS_SECTION
        self.batch_limit = batch_limit or settings.PAYOUT_BATCH_LIMIT
        self.timezone = timezone or settings.TIMEZONE
        self.isolated_phases = isolated_phases
        self.orphan_grace = timedelta(
            minutes=orphan_grace_minutes
            if orphan_grace_minutes is not None
            else settings.ORPHAN_GRACE_MINUTES
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def process_batch(
        self,
        payout_ids: Iterable[Union[uuid.UUID, str]],
        action: Union[SettlementAction, str],
        *,
        actor: str,
        payment_meta: Optional[PaymentMeta] = None,
        now: Optional[datetime] = None,
    ) -> SettlementResult:
        """Settle a batch of payouts; all-or-nothing at validation time."""
        action = self._parse_action(action)
        if not actor:
            raise ValidationError(
                "An authenticated admin identity is required", action=action.value
            )
        ids = self._normalize_ids(payout_ids, action)
        now = now or utc_now()

        try:
            payouts = await self._load_for_update(ids)
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise PersistenceError(
                "Failed to load payouts",
                phase="load",
                action=action.value,
                ids=ids,
            ) from exc

        try:
            self._check_preconditions(ids, action, payouts)
        except InvalidStateError:
            # release the row locks taken above
            await self._db.rollback()
            raise

        if action == SettlementAction.MARK_PAID:
            return await self._mark_paid(
                ids, payouts, actor, payment_meta or PaymentMeta(), now
            )
        return await self._cancel(ids, payouts, actor, payment_meta or PaymentMeta(), now)

    async def compensate(self, entry_ids: Sequence[uuid.UUID]) -> int:
        """Delete ledger entries by id. Safe to call repeatedly.

        Returns the number of rows removed by this call.
        """
        if not entry_ids:
            return 0
        result = await self._db.execute(
            delete(TdsLedgerEntry)
            .where(TdsLedgerEntry.id.in_(list(entry_ids)))
            .execution_options(synchronize_session=False)
        )
        await self._db.commit()
        return result.rowcount or 0

    async def reconcile_orphan_entries(
        self, *, actor: str = "system", now: Optional[datetime] = None
    ) -> list[uuid.UUID]:
        """Remove ledger entries whose payout never reached ``paid``.

        Entries younger than the grace window are left alone: with isolated
        phases they may belong to a batch that has not reached phase 2 yet.
        The payouts are locked and their status is checked again by the
        delete itself, so a batch that commits in between keeps its entries.
        """
        now = now or utc_now()
        cutoff = now - self.orphan_grace
        entry_ids: list[uuid.UUID] = []
        try:
            result = await self._db.execute(
                select(TdsLedgerEntry.id, TdsLedgerEntry.payout_id)
                .join(CoachPayout, CoachPayout.id == TdsLedgerEntry.payout_id)
                .where(
                    CoachPayout.status != PayoutStatus.PAID,
                    TdsLedgerEntry.created_at < cutoff,
                )
                .with_for_update(of=CoachPayout)
            )
            orphans = result.all()
            if not orphans:
                await self._db.rollback()
                return []

            entry_ids = [row.id for row in orphans]
            removed_ids = await self._delete_unpaid_entries(entry_ids)
            await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise PersistenceError(
                "Failed to remove orphan TDS ledger entries",
                phase="compensation",
                action="reconcile",
                ids=entry_ids,
            ) from exc

        if not removed_ids:
            return []
        payout_ids = [str(r.payout_id) for r in orphans if r.id in removed_ids]

        logger.warning(
            f"Removed {len(removed_ids)} orphan TDS ledger entries",
            extra={"extra_fields": {"payout_ids": payout_ids}},
        )
        await record_safely(
            self._audit,
            AuditEntry(
                actor=actor,
                action="tds_orphans_reconciled",
                target_ids=[str(i) for i in removed_ids],
                timestamp=now,
                details={"payout_ids": payout_ids},
            ),
        )
        return removed_ids

    async def _delete_unpaid_entries(
        self, entry_ids: list[uuid.UUID]
    ) -> list[uuid.UUID]:
        """Delete the given entries unless their payout has been paid meanwhile."""
        unpaid = (
            select(CoachPayout.id)
            .where(CoachPayout.status != PayoutStatus.PAID)
            .with_for_update()
        )
        await self._db.execute(
            delete(TdsLedgerEntry)
            .where(
                TdsLedgerEntry.id.in_(entry_ids),
                TdsLedgerEntry.payout_id.in_(unpaid),
            )
            .execution_options(synchronize_session=False)
        )
        kept = set(
            (
                await self._db.execute(
                    select(TdsLedgerEntry.id).where(TdsLedgerEntry.id.in_(entry_ids))
                )
            )
            .scalars()
            .all()
        )
        return [i for i in entry_ids if i not in kept]

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_action(action: Union[SettlementAction, str]) -> SettlementAction:
        try:
            return SettlementAction(action)
        except ValueError:
            raise ValidationError(
                f"Unknown action {action!r}; expected mark_paid or cancel",
                action=str(action),
            )

    def _normalize_ids(
        self, payout_ids: Iterable[Union[uuid.UUID, str]], action: SettlementAction
    ) -> list[uuid.UUID]:
        ids: list[uuid.UUID] = []
        malformed: list[str] = []
        for raw in payout_ids or []:
            try:
                ids.append(raw if isinstance(raw, uuid.UUID) else uuid.UUID(str(raw)))
            except ValueError:
                malformed.append(str(raw))
        if malformed:
            raise ValidationError(
                "Invalid payout ID", action=action.value, ids=malformed
            )

        ids = list(dict.fromkeys(ids))
        if not ids:
            raise ValidationError(
                "At least one payout ID required", action=action.value
            )
        if len(ids) > self.batch_limit:
            raise ValidationError(
                f"Maximum {self.batch_limit} payouts per batch, got {len(ids)}",
                action=action.value,
                context={"batch_size": len(ids)},
            )
        return ids

    async def _load_for_update(self, ids: list[uuid.UUID]) -> list[CoachPayout]:
        result = await self._db.execute(
            select(CoachPayout)
            .where(CoachPayout.id.in_(ids))
            .order_by(CoachPayout.id)
            .with_for_update()
        )
        return list(result.scalars().all())

    @staticmethod
    def _check_preconditions(
        ids: list[uuid.UUID], action: SettlementAction, payouts: list[CoachPayout]
    ) -> None:
        found = {p.id for p in payouts}
        missing = [i for i in ids if i not in found]
        if missing:
            raise InvalidStateError(
                "Some payout IDs not found",
                action=action.value,
                ids=missing,
                context={"missing_ids": [str(i) for i in missing]},
            )

        allowed = ALLOWED_SOURCE_STATUSES[action]
        invalid = [p for p in payouts if p.status not in allowed]
        if invalid:
            verb = "marked as paid" if action == SettlementAction.MARK_PAID else "cancelled"
            raise InvalidStateError(
                f"Some payouts cannot be {verb}",
                action=action.value,
                ids=[p.id for p in invalid],
                context={
                    "invalid_payouts": [
                        {"id": str(p.id), "status": p.status.value} for p in invalid
                    ]
                },
            )

        inconsistent = [p for p in payouts if not p.amounts_consistent]
        if inconsistent:
            raise InvalidStateError(
                "Payout amounts do not satisfy gross - tds = net",
                action=action.value,
                ids=[p.id for p in inconsistent],
            )

    # ------------------------------------------------------------------
    # mark_paid
    # ------------------------------------------------------------------

    def _ledger_entry(self, payout: CoachPayout, period: FiscalPeriod) -> TdsLedgerEntry:
        return TdsLedgerEntry(
            id=uuid.uuid4(),
            payout_id=payout.id,
            coach_id=payout.coach_id,
            financial_year=period.financial_year,
            quarter=period.quarter,
            section=self.tds_section,
            gross_amount=payout.gross_amount,
            tds_rate=payout.tds_rate,
            tds_amount=payout.tds_amount,
            deposited=False,
        )

    async def _insert_ledger_entries(
        self, entries: list[TdsLedgerEntry]
    ) -> list[uuid.UUID]:
        """Phase 1. Returns the ids of the inserted entries."""
        if not entries:
            return []
        self._db.add_all(entries)
        await self._db.flush()
        entry_ids = [entry.id for entry in entries]
        if self.isolated_phases:
            await self._db.commit()
        return entry_ids

    async def _update_payout_status(
        self,
        ids: list[uuid.UUID],
        action: SettlementAction,
        values: dict,
    ) -> int:
        """Phase 2. Returns the number of payouts that actually moved."""
        result = await self._db.execute(
            update(CoachPayout)
            .where(
                CoachPayout.id.in_(ids),
                CoachPayout.status.in_(ALLOWED_SOURCE_STATUSES[action]),
            )
            .values(status=TARGET_STATUS[action], **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def _moved_ids(
        self, ids: list[uuid.UUID], action: SettlementAction
    ) -> list[uuid.UUID]:
        result = await self._db.execute(
            select(CoachPayout.id, CoachPayout.status).where(CoachPayout.id.in_(ids))
        )
        allowed = ALLOWED_SOURCE_STATUSES[action]
        return [row.id for row in result.all() if row.status not in allowed]

    async def _missing_entries(
        self, entry_ids: list[uuid.UUID]
    ) -> list[uuid.UUID]:
        if not entry_ids:
            return []
        result = await self._db.execute(
            select(TdsLedgerEntry.id).where(TdsLedgerEntry.id.in_(entry_ids))
        )
        present = set(result.scalars().all())
        return [i for i in entry_ids if i not in present]

    async def _refresh(self, ids: list[uuid.UUID]) -> None:
        """Reload the batch so objects in the session show the committed status."""
        result = await self._db.execute(
            select(CoachPayout)
            .where(CoachPayout.id.in_(ids))
            .execution_options(populate_existing=True)
        )
        result.scalars().all()

    async def _compensate_after_failure(
        self, entry_ids: list[uuid.UUID], batch_ids: list[uuid.UUID]
    ) -> None:
        """Run compensation without masking the error that triggered it."""
        try:
            removed = await self.compensate(entry_ids)
        except SQLAlchemyError:
            await self._db.rollback()
            logger.exception(
                "Compensation failed; orphan TDS entries remain until reconciliation",
                extra={
                    "extra_fields": {
                        "ledger_entry_ids": [str(i) for i in entry_ids],
                        "payout_ids": [str(i) for i in batch_ids],
                    }
                },
            )
            return
        logger.warning(
            "Rolled back TDS entries after payout update failure",
            extra={
                "extra_fields": {
                    "ledger_entry_ids": [str(i) for i in entry_ids],
                    "rows_removed": removed,
                }
            },
        )

    async def _mark_paid(
        self,
        ids: list[uuid.UUID],
        payouts: list[CoachPayout],
        actor: str,
        meta: PaymentMeta,
        now: datetime,
    ) -> SettlementResult:
        action = SettlementAction.MARK_PAID
        period = fiscal_period(business_date(now, self.timezone))
        entries = [self._ledger_entry(p, period) for p in payouts if p.tds_amount > 0]
        total_amount = sum(p.net_amount for p in payouts)
        total_gross = sum(p.gross_amount for p in payouts)
        total_tds = sum(p.tds_amount for p in payouts)

        # Phase 1: ledger entries
        try:
            entry_ids = await self._insert_ledger_entries(entries)
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise PersistenceError(
                "Failed to create TDS entries",
                phase="ledger_insert",
                action=action.value,
                ids=ids,
            ) from exc

        # Phase 2: payout status
        values = {
            "paid_at": now,
            "payment_method": meta.payment_method,
            "payment_reference": meta.payment_reference,
            "updated_at": now,
        }
        if meta.notes:
            values["notes"] = meta.notes

        missing_entries: list[uuid.UUID] = []
        try:
            updated = await self._update_payout_status(ids, action, values)
            if updated == len(ids) and self.isolated_phases:
                # phase 1 is already committed; another writer may have removed rows
                missing_entries = await self._missing_entries(entry_ids)
            if updated == len(ids) and not missing_entries:
                await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            await self._compensate_after_failure(entry_ids, ids)
            raise PersistenceError(
                "Failed to update payout status",
                phase="status_update",
                action=action.value,
                ids=ids,
                context={"ledger_entries_rolled_back": len(entry_ids)},
            ) from exc

        if updated != len(ids):
            await self._db.rollback()
            await self._compensate_after_failure(entry_ids, ids)
            moved = await self._moved_ids(ids, action)
            raise InvalidStateError(
                "Payouts changed status while the batch was being processed",
                action=action.value,
                ids=moved,
            )

        if missing_entries:
            await self._db.rollback()
            await self._compensate_after_failure(entry_ids, ids)
            raise PersistenceError(
                "TDS entries were removed before the payouts were marked paid",
                phase="ledger_verify",
                action=action.value,
                ids=ids,
                context={"missing_ledger_entries": [str(i) for i in missing_entries]},
            )

        await self._refresh(ids)

        logger.info(
            f"{updated} payouts marked as paid",
            extra={
                "extra_fields": {
                    "event": "payouts_marked_paid",
                    "total_amount": total_amount,
                    "tds_entries_created": len(entry_ids),
                    "quarter": period.quarter,
                    "financial_year": period.financial_year,
                }
            },
        )

        await record_safely(
            self._audit,
            AuditEntry(
                actor=actor,
                action="payouts_marked_paid",
                target_ids=[str(i) for i in ids],
                timestamp=now,
                amounts={
                    "total_amount": total_amount,
                    "total_gross": total_gross,
                    "total_tds": total_tds,
                },
                details={
                    "payout_count": updated,
                    "tds_entries_created": len(entry_ids),
                    "payment_method": meta.payment_method.value,
                    "payment_reference": meta.payment_reference,
                    "notes": meta.notes,
                    "quarter": period.quarter,
                    "financial_year": period.financial_year,
                },
            ),
        )

        return SettlementResult(
            action=action,
            updated_count=updated,
            total_amount=total_amount,
            ledger_entries_created=len(entry_ids),
            payout_ids=[str(i) for i in ids],
        )

    # ------------------------------------------------------------------
    # cancel
    # ------------------------------------------------------------------

    async def _cancel(
        self,
        ids: list[uuid.UUID],
        payouts: list[CoachPayout],
        actor: str,
        meta: PaymentMeta,
        now: datetime,
    ) -> SettlementResult:
        action = SettlementAction.CANCEL
        total_cancelled = sum(p.net_amount for p in payouts)

        values = {"updated_at": now}
        if meta.notes:
            values["notes"] = meta.notes

        try:
            updated = await self._update_payout_status(ids, action, values)
            if updated == len(ids):
                await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise PersistenceError(
                "Failed to cancel payouts",
                phase="status_update",
                action=action.value,
                ids=ids,
            ) from exc

        if updated != len(ids):
            await self._db.rollback()
            moved = await self._moved_ids(ids, action)
            raise InvalidStateError(
                "Payouts changed status while the batch was being processed",
                action=action.value,
                ids=moved,
            )

        await self._refresh(ids)

        logger.info(
            f"{updated} payouts cancelled",
            extra={
                "extra_fields": {
                    "event": "payouts_cancelled",
                    "total_cancelled": total_cancelled,
                }
            },
        )

        await record_safely(
            self._audit,
            AuditEntry(
                actor=actor,
                action="payouts_cancelled",
                target_ids=[str(i) for i in ids],
                timestamp=now,
                amounts={"total_cancelled": total_cancelled},
                details={"payout_count": updated, "notes": meta.notes},
            ),
        )

        return SettlementResult(
            action=action,
            updated_count=updated,
            total_amount=total_cancelled,
            ledger_entries_created=0,
            payout_ids=[str(i) for i in ids],
        )
