"""Unit tests for SettlementLedger.process_batch.

Tests drive the ledger directly with the db_session fixture and read the
outcome back through a separate session.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from libs.common.errors import InvalidStateError, PersistenceError, ValidationError
from services.settlement_service.models import (
    CoachPayout,
    PayoutMethod,
    PayoutStatus,
    SettlementAction,
    TdsLedgerEntry,
)
from services.settlement_service.schemas import PaymentMeta
from services.settlement_service.services import SettlementLedger
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import OperationalError
from tests.factories import (
    FIXED_NOW,
    FailingAuditRecorder,
    PayoutFactory,
    RecordingAuditRecorder,
    TdsLedgerEntryFactory,
)

ACTOR = "ops@example.com"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _insert(session_factory, *rows):
    """Insert through a separate session so the objects stay readable after
    the ledger rolls back its own session."""
    async with session_factory() as session:
        session.add_all(rows)
        await session.commit()
    return rows


async def _status(session_factory, payout_id) -> PayoutStatus:
    async with session_factory() as session:
        return await session.scalar(
            select(CoachPayout.status).where(CoachPayout.id == payout_id)
        )


async def _ledger_rows(session_factory) -> list[TdsLedgerEntry]:
    async with session_factory() as session:
        result = await session.execute(select(TdsLedgerEntry))
        return list(result.scalars().all())


def _ledger(db, audit=None, **kwargs) -> SettlementLedger:
    return SettlementLedger(db, audit=audit or RecordingAuditRecorder(), **kwargs)


# ---------------------------------------------------------------------------
# mark_paid
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_mark_paid_writes_one_tds_entry(db_session, session_factory):
    """Gross 10000 with 10% withholding: tds 1000, net 9000."""
    (payout,) = await _insert(session_factory, PayoutFactory.create(gross_amount=10000))
    assert (payout.tds_amount, payout.net_amount) == (1000, 9000)
    audit = RecordingAuditRecorder()

    result = await _ledger(db_session, audit).process_batch(
        [payout.id],
        SettlementAction.MARK_PAID,
        actor=ACTOR,
        payment_meta=PaymentMeta(
            payment_method=PayoutMethod.BANK_TRANSFER, payment_reference="UTR123"
        ),
        now=FIXED_NOW,
    )

    assert result.updated_count == 1
    assert result.total_amount == 9000
    assert result.ledger_entries_created == 1

    rows = await _ledger_rows(session_factory)
    assert len(rows) == 1
    entry = rows[0]
    assert entry.payout_id == payout.id
    assert entry.coach_id == payout.coach_id
    assert entry.gross_amount == 10000
    assert entry.tds_amount == 1000
    assert entry.tds_rate == 10
    assert entry.section == "194J"
    assert entry.financial_year == "2026-27"
    assert entry.quarter == "Q3"
    assert entry.deposited is False

    async with session_factory() as session:
        stored = await session.get(CoachPayout, payout.id)
    assert stored.status == PayoutStatus.PAID
    assert stored.paid_at is not None
    assert stored.payment_method == PayoutMethod.BANK_TRANSFER
    assert stored.payment_reference == "UTR123"

    assert audit.actions() == ["payouts_marked_paid"]
    assert audit.entries[0].amounts["total_amount"] == 9000
    assert audit.entries[0].target_ids == [str(payout.id)]
    assert audit.entries[0].actor == ACTOR


@pytest.mark.asyncio
@pytest.mark.unit
async def test_zero_withholding_writes_no_entry(db_session, session_factory):
    (payout,) = await _insert(
        session_factory, PayoutFactory.create(gross_amount=5000, tds_rate_percent=0)
    )

    result = await _ledger(db_session).process_batch(
        [payout.id], "mark_paid", actor=ACTOR, now=FIXED_NOW
    )

    assert result.ledger_entries_created == 0
    assert result.total_amount == 5000
    assert await _ledger_rows(session_factory) == []
    assert await _status(session_factory, payout.id) == PayoutStatus.PAID


@pytest.mark.asyncio
@pytest.mark.unit
async def test_mixed_batch_totals(db_session, session_factory):
    payouts = await _insert(
        session_factory,
        PayoutFactory.create(gross_amount=10000),
        PayoutFactory.create(gross_amount=25005),  # tds 2501 (2500.5 half-up)
        PayoutFactory.create(gross_amount=3000, tds_rate_percent=0),
        PayoutFactory.create(gross_amount=7000, status=PayoutStatus.PROCESSING),
    )

    result = await _ledger(db_session).process_batch(
        [p.id for p in payouts], SettlementAction.MARK_PAID, actor=ACTOR, now=FIXED_NOW
    )

    assert result.updated_count == 4
    assert result.total_amount == 9000 + 22504 + 3000 + 6300
    assert result.ledger_entries_created == 3
    for payout in payouts:
        assert await _status(session_factory, payout.id) == PayoutStatus.PAID


@pytest.mark.asyncio
@pytest.mark.unit
async def test_fiscal_period_follows_now(db_session, session_factory):
    (payout,) = await _insert(session_factory, PayoutFactory.create())
    january = datetime(2027, 1, 15, 6, 0, tzinfo=timezone.utc)

    await _ledger(db_session).process_batch(
        [payout.id], SettlementAction.MARK_PAID, actor=ACTOR, now=january
    )

    (entry,) = await _ledger_rows(session_factory)
    assert entry.quarter == "Q4"
    assert entry.financial_year == "2026-27"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_duplicate_ids_counted_once(db_session, session_factory):
    (payout,) = await _insert(session_factory, PayoutFactory.create())

    result = await _ledger(db_session).process_batch(
        [payout.id, str(payout.id), payout.id],
        SettlementAction.MARK_PAID,
        actor=ACTOR,
        now=FIXED_NOW,
    )

    assert result.updated_count == 1
    assert result.ledger_entries_created == 1


# ---------------------------------------------------------------------------
# Preconditions
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_id_rejects_whole_batch(db_session, session_factory):
    (payout,) = await _insert(session_factory, PayoutFactory.create())
    missing = uuid.uuid4()

    with pytest.raises(InvalidStateError) as exc_info:
        await _ledger(db_session).process_batch(
            [payout.id, missing], SettlementAction.MARK_PAID, actor=ACTOR, now=FIXED_NOW
        )

    assert exc_info.value.ids == [str(missing)]
    assert exc_info.value.action == "mark_paid"
    assert await _status(session_factory, payout.id) == PayoutStatus.SCHEDULED
    assert await _ledger_rows(session_factory) == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cannot_cancel_paid_payout(db_session, session_factory):
    paid, scheduled = await _insert(
        session_factory,
        PayoutFactory.create(status=PayoutStatus.PAID),
        PayoutFactory.create(),
    )

    with pytest.raises(InvalidStateError) as exc_info:
        await _ledger(db_session).process_batch(
            [paid.id, scheduled.id], SettlementAction.CANCEL, actor=ACTOR, now=FIXED_NOW
        )

    assert exc_info.value.ids == [str(paid.id)]
    assert await _status(session_factory, paid.id) == PayoutStatus.PAID
    assert await _status(session_factory, scheduled.id) == PayoutStatus.SCHEDULED


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize("status", [PayoutStatus.PAID, PayoutStatus.CANCELLED])
async def test_cannot_mark_terminal_payout_paid(db_session, session_factory, status):
    (payout,) = await _insert(session_factory, PayoutFactory.create(status=status))

    with pytest.raises(InvalidStateError):
        await _ledger(db_session).process_batch(
            [payout.id], SettlementAction.MARK_PAID, actor=ACTOR, now=FIXED_NOW
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cannot_cancel_processing_payout(db_session, session_factory):
    (payout,) = await _insert(
        session_factory, PayoutFactory.create(status=PayoutStatus.PROCESSING)
    )

    with pytest.raises(InvalidStateError):
        await _ledger(db_session).process_batch(
            [payout.id], SettlementAction.CANCEL, actor=ACTOR, now=FIXED_NOW
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_inconsistent_amounts_rejected(db_session, session_factory):
    broken = PayoutFactory.create()
    broken.net_amount = broken.net_amount + 1
    await _insert(session_factory, broken)

    with pytest.raises(InvalidStateError) as exc_info:
        await _ledger(db_session).process_batch(
            [broken.id], SettlementAction.MARK_PAID, actor=ACTOR, now=FIXED_NOW
        )

    assert exc_info.value.ids == [str(broken.id)]
    assert await _ledger_rows(session_factory) == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_batch_over_limit_rejected(db_session):
    with pytest.raises(ValidationError):
        await _ledger(db_session).process_batch(
            [uuid.uuid4() for _ in range(51)],
            SettlementAction.MARK_PAID,
            actor=ACTOR,
            now=FIXED_NOW,
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_empty_batch_rejected(db_session):
    with pytest.raises(ValidationError):
        await _ledger(db_session).process_batch(
            [], SettlementAction.CANCEL, actor=ACTOR, now=FIXED_NOW
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_action_rejected(db_session):
    with pytest.raises(ValidationError):
        await _ledger(db_session).process_batch(
            [uuid.uuid4()], "refund", actor=ACTOR, now=FIXED_NOW
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_actor_required(db_session):
    with pytest.raises(ValidationError):
        await _ledger(db_session).process_batch(
            [uuid.uuid4()], SettlementAction.CANCEL, actor="", now=FIXED_NOW
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_malformed_id_rejected(db_session):
    with pytest.raises(ValidationError) as exc_info:
        await _ledger(db_session).process_batch(
            ["not-a-uuid"], SettlementAction.CANCEL, actor=ACTOR, now=FIXED_NOW
        )
    assert exc_info.value.ids == ["not-a-uuid"]


# ---------------------------------------------------------------------------
# cancel
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancel_scheduled_payouts(db_session, session_factory):
    payouts = await _insert(
        session_factory, PayoutFactory.create(), PayoutFactory.create(gross_amount=20000)
    )
    audit = RecordingAuditRecorder()

    result = await _ledger(db_session, audit).process_batch(
        [p.id for p in payouts],
        SettlementAction.CANCEL,
        actor=ACTOR,
        payment_meta=PaymentMeta(notes="Coach left the program"),
        now=FIXED_NOW,
    )

    assert result.updated_count == 2
    assert result.total_amount == 9000 + 18000
    assert result.ledger_entries_created == 0
    for payout in payouts:
        assert await _status(session_factory, payout.id) == PayoutStatus.CANCELLED
    assert await _ledger_rows(session_factory) == []
    assert audit.actions() == ["payouts_cancelled"]
    assert audit.entries[0].details["notes"] == "Coach left the program"


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize("isolated_phases", [False, True])
async def test_status_update_failure_leaves_no_ledger_rows(
    db_session, session_factory, monkeypatch, isolated_phases
):
    """A failed payout update removes the TDS rows written before it."""
    payouts = await _insert(
        session_factory, PayoutFactory.create(), PayoutFactory.create(gross_amount=30000)
    )
    audit = RecordingAuditRecorder()
    ledger = _ledger(db_session, audit, isolated_phases=isolated_phases)

    async def failing_update(ids, action, values):
        raise OperationalError("UPDATE coach_payouts", {}, Exception("disk I/O error"))

    monkeypatch.setattr(ledger, "_update_payout_status", failing_update)

    with pytest.raises(PersistenceError) as exc_info:
        await ledger.process_batch(
            [p.id for p in payouts], SettlementAction.MARK_PAID, actor=ACTOR, now=FIXED_NOW
        )

    assert exc_info.value.phase == "status_update"
    assert await _ledger_rows(session_factory) == []
    for payout in payouts:
        assert await _status(session_factory, payout.id) == PayoutStatus.SCHEDULED
    assert audit.entries == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_ledger_insert_failure_changes_nothing(db_session, session_factory):
    """A leftover entry for the payout makes phase 1 fail on the unique key."""
    (payout,) = await _insert(session_factory, PayoutFactory.create())
    await _insert(session_factory, TdsLedgerEntryFactory.create(payout))

    with pytest.raises(PersistenceError) as exc_info:
        await _ledger(db_session).process_batch(
            [payout.id], SettlementAction.MARK_PAID, actor=ACTOR, now=FIXED_NOW
        )

    assert exc_info.value.phase == "ledger_insert"
    assert await _status(session_factory, payout.id) == PayoutStatus.SCHEDULED
    assert len(await _ledger_rows(session_factory)) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_concurrent_transition_reported_with_moved_ids(
    db_session, session_factory, monkeypatch
):
    """A payout cancelled by another writer mid-batch fails the whole batch."""
    first, second = await _insert(
        session_factory, PayoutFactory.create(), PayoutFactory.create()
    )
    ledger = _ledger(db_session)
    original_insert = ledger._insert_ledger_entries

    async def insert_after_concurrent_cancel(entries):
        async with session_factory() as other:
            await other.execute(
                update(CoachPayout)
                .where(CoachPayout.id == second.id)
                .values(status=PayoutStatus.CANCELLED)
            )
            await other.commit()
        return await original_insert(entries)

    monkeypatch.setattr(ledger, "_insert_ledger_entries", insert_after_concurrent_cancel)

    with pytest.raises(InvalidStateError) as exc_info:
        await ledger.process_batch(
            [first.id, second.id], SettlementAction.MARK_PAID, actor=ACTOR, now=FIXED_NOW
        )

    assert exc_info.value.ids == [str(second.id)]
    assert await _status(session_factory, first.id) == PayoutStatus.SCHEDULED
    assert await _status(session_factory, second.id) == PayoutStatus.CANCELLED
    assert await _ledger_rows(session_factory) == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_load_failure_raises_persistence_error(
    db_session, session_factory, monkeypatch
):
    (payout,) = await _insert(session_factory, PayoutFactory.create())
    ledger = _ledger(db_session)

    async def failing_load(ids):
        raise OperationalError("SELECT coach_payouts", {}, Exception("connection reset"))

    monkeypatch.setattr(ledger, "_load_for_update", failing_load)

    with pytest.raises(PersistenceError) as exc_info:
        await ledger.process_batch(
            [payout.id], SettlementAction.MARK_PAID, actor=ACTOR, now=FIXED_NOW
        )

    assert exc_info.value.phase == "load"
    assert exc_info.value.ids == [str(payout.id)]
    assert await _status(session_factory, payout.id) == PayoutStatus.SCHEDULED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reconcile_between_phases_keeps_running_batch_entries(
    db_session, session_factory, monkeypatch
):
    """The cleanup job runs after phase 1 committed but before phase 2."""
    (payout,) = await _insert(session_factory, PayoutFactory.create())
    ledger = _ledger(db_session, isolated_phases=True)
    original_update = ledger._update_payout_status
    removed_between = []

    async def update_after_cleanup(ids, action, values):
        async with session_factory() as other:
            removed_between.extend(
                await _ledger(other).reconcile_orphan_entries(actor="system")
            )
        return await original_update(ids, action, values)

    monkeypatch.setattr(ledger, "_update_payout_status", update_after_cleanup)

    result = await ledger.process_batch(
        [payout.id], SettlementAction.MARK_PAID, actor=ACTOR, now=FIXED_NOW
    )

    assert removed_between == []
    assert result.ledger_entries_created == 1
    assert await _status(session_factory, payout.id) == PayoutStatus.PAID
    rows = await _ledger_rows(session_factory)
    assert [r.payout_id for r in rows] == [payout.id]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_entries_removed_between_phases_fail_the_batch(
    db_session, session_factory, monkeypatch
):
    """A payout is never marked paid once its TDS entry is gone."""
    (payout,) = await _insert(session_factory, PayoutFactory.create())
    ledger = _ledger(db_session, isolated_phases=True)
    original_update = ledger._update_payout_status

    async def update_after_entries_deleted(ids, action, values):
        async with session_factory() as other:
            await other.execute(delete(TdsLedgerEntry))
            await other.commit()
        return await original_update(ids, action, values)

    monkeypatch.setattr(ledger, "_update_payout_status", update_after_entries_deleted)

    with pytest.raises(PersistenceError) as exc_info:
        await ledger.process_batch(
            [payout.id], SettlementAction.MARK_PAID, actor=ACTOR, now=FIXED_NOW
        )

    assert exc_info.value.phase == "ledger_verify"
    assert await _status(session_factory, payout.id) == PayoutStatus.SCHEDULED
    assert await _ledger_rows(session_factory) == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_session_objects_show_committed_status(db_session, session_factory):
    (payout,) = await _insert(session_factory, PayoutFactory.create())

    await _ledger(db_session).process_batch(
        [payout.id], SettlementAction.MARK_PAID, actor=ACTOR, now=FIXED_NOW
    )

    in_session = await db_session.get(CoachPayout, payout.id)
    assert in_session.status == PayoutStatus.PAID
    assert in_session.payment_method == PayoutMethod.MANUAL


@pytest.mark.asyncio
@pytest.mark.unit
async def test_ledger_records_rate_the_payout_was_accrued_at(
    db_session, session_factory
):
    (payout,) = await _insert(
        session_factory, PayoutFactory.create(gross_amount=10000, tds_rate_percent=5)
    )

    await _ledger(db_session).process_batch(
        [payout.id], SettlementAction.MARK_PAID, actor=ACTOR, now=FIXED_NOW
    )

    (entry,) = await _ledger_rows(session_factory)
    assert (entry.tds_rate, entry.tds_amount) == (5, 500)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_withholding_not_matching_rate_rejected(db_session, session_factory):
    drifted = PayoutFactory.create(gross_amount=10000, tds_rate_percent=10)
    drifted.tds_rate = 20
    await _insert(session_factory, drifted)

    with pytest.raises(InvalidStateError) as exc_info:
        await _ledger(db_session).process_batch(
            [drifted.id], SettlementAction.MARK_PAID, actor=ACTOR, now=FIXED_NOW
        )

    assert exc_info.value.ids == [str(drifted.id)]
    assert await _ledger_rows(session_factory) == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_audit_failure_is_not_fatal(db_session, session_factory, caplog):
    (payout,) = await _insert(session_factory, PayoutFactory.create())

    result = await _ledger(db_session, FailingAuditRecorder()).process_batch(
        [payout.id], SettlementAction.MARK_PAID, actor=ACTOR, now=FIXED_NOW
    )

    assert result.updated_count == 1
    assert await _status(session_factory, payout.id) == PayoutStatus.PAID
    assert "Audit log failed" in caplog.text


# ---------------------------------------------------------------------------
# Compensation and reconciliation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_compensate_is_idempotent(db_session, session_factory):
    (payout,) = await _insert(session_factory, PayoutFactory.create())
    entry = TdsLedgerEntryFactory.create(payout)
    await _insert(session_factory, entry)
    ledger = _ledger(db_session)

    assert await ledger.compensate([entry.id]) == 1
    assert await ledger.compensate([entry.id]) == 0
    assert await ledger.compensate([]) == 0
    assert await _ledger_rows(session_factory) == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reconcile_removes_only_orphans(db_session, session_factory):
    orphan_payout, paid_payout = await _insert(
        session_factory,
        PayoutFactory.create(),
        PayoutFactory.create(status=PayoutStatus.PAID),
    )
    stale = FIXED_NOW - timedelta(hours=2)
    orphan = TdsLedgerEntryFactory.create(orphan_payout, created_at=stale)
    legit = TdsLedgerEntryFactory.create(paid_payout, created_at=stale)
    await _insert(session_factory, orphan, legit)
    audit = RecordingAuditRecorder()

    removed = await _ledger(db_session, audit).reconcile_orphan_entries(now=FIXED_NOW)

    assert removed == [orphan.id]
    rows = await _ledger_rows(session_factory)
    assert [r.id for r in rows] == [legit.id]
    assert audit.actions() == ["tds_orphans_reconciled"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reconcile_with_nothing_to_do(db_session):
    audit = RecordingAuditRecorder()
    assert await _ledger(db_session, audit).reconcile_orphan_entries() == []
    assert audit.entries == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reconcile_skips_entries_inside_grace_window(db_session, session_factory):
    recent_payout, old_payout = await _insert(
        session_factory, PayoutFactory.create(), PayoutFactory.create()
    )
    recent = TdsLedgerEntryFactory.create(
        recent_payout, created_at=FIXED_NOW - timedelta(minutes=5)
    )
    old = TdsLedgerEntryFactory.create(
        old_payout, created_at=FIXED_NOW - timedelta(minutes=45)
    )
    await _insert(session_factory, recent, old)

    removed = await _ledger(db_session, orphan_grace_minutes=30).reconcile_orphan_entries(
        now=FIXED_NOW
    )

    assert removed == [old.id]
    assert [r.id for r in await _ledger_rows(session_factory)] == [recent.id]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reconcile_keeps_entry_whose_payout_was_paid_meanwhile(
    db_session, session_factory, monkeypatch
):
    (payout,) = await _insert(session_factory, PayoutFactory.create())
    entry = TdsLedgerEntryFactory.create(
        payout, created_at=FIXED_NOW - timedelta(hours=2)
    )
    await _insert(session_factory, entry)
    audit = RecordingAuditRecorder()
    ledger = _ledger(db_session, audit)
    original_delete = ledger._delete_unpaid_entries

    async def delete_after_payout_settled(entry_ids):
        async with session_factory() as other:
            await other.execute(
                update(CoachPayout)
                .where(CoachPayout.id == payout.id)
                .values(status=PayoutStatus.PAID)
            )
            await other.commit()
        return await original_delete(entry_ids)

    monkeypatch.setattr(ledger, "_delete_unpaid_entries", delete_after_payout_settled)

    assert await ledger.reconcile_orphan_entries(now=FIXED_NOW) == []
    assert [r.id for r in await _ledger_rows(session_factory)] == [entry.id]
    assert audit.entries == []


@pytest.mark.unit
def test_from_gross_keeps_amounts_consistent():
    payout = CoachPayout.from_gross(12345, 10)
    assert payout.tds_amount == 1235
    assert payout.net_amount == 11110
    assert payout.amounts_consistent


@pytest.mark.asyncio
@pytest.mark.unit
async def test_ledger_count_matches_withholding_payouts(db_session, session_factory):
    payouts = await _insert(
        session_factory,
        *[PayoutFactory.create(gross_amount=1000 * (i + 1)) for i in range(5)],
        PayoutFactory.create(gross_amount=900, tds_rate_percent=0),
    )

    await _ledger(db_session).process_batch(
        [p.id for p in payouts], SettlementAction.MARK_PAID, actor=ACTOR, now=FIXED_NOW
    )

    async with session_factory() as session:
        count = await session.scalar(select(func.count(TdsLedgerEntry.id)))
    assert count == 5
