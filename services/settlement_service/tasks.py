"""Scheduled repair of orphan TDS ledger entries.

An orphan is a ledger row whose payout never reached ``paid``: the leftover
of a mark_paid batch whose compensation itself failed.
"""

from datetime import datetime
from typing import Optional

from libs.audit.recorder import DatabaseAuditRecorder
from libs.common.logging import get_logger
from libs.db.session import get_session_factory
from services.settlement_service.services.ledger import SettlementLedger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)


async def reconcile_tds_ledger(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    now: Optional[datetime] = None,
) -> int:
    """Delete orphan ledger entries; returns how many were removed."""
    session_factory = session_factory or get_session_factory()
    async with session_factory() as db:
        ledger = SettlementLedger(db, audit=DatabaseAuditRecorder(session_factory))
        removed = await ledger.reconcile_orphan_entries(actor="system", now=now)

    if not removed:
        logger.debug("No orphan TDS ledger entries")
    return len(removed)
