"""Audit port injected into the engine components.

Audit is observability, not a correctness gate: callers write the record
after their own commit and treat a failure here as non-fatal.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from libs.audit.models import AuditLog
from libs.common.logging import get_logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)


@dataclass(frozen=True)
class AuditEntry:
    actor: str
    action: str
    target_ids: list[str]
    timestamp: datetime
    amounts: dict[str, int] = field(default_factory=dict)
    details: dict[str, Any] = field(default_factory=dict)


class AuditRecorder:
    """Interface for audit sinks."""

    async def record(self, entry: AuditEntry) -> None:
        raise NotImplementedError


class DatabaseAuditRecorder(AuditRecorder):
    """Writes each entry to ``audit_logs`` in its own session and transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def record(self, entry: AuditEntry) -> None:
        async with self._session_factory() as session:
            session.add(
                AuditLog(
                    actor=entry.actor,
                    action=entry.action,
                    target_ids=list(entry.target_ids),
                    amounts=dict(entry.amounts),
                    details=dict(entry.details) or None,
                    created_at=entry.timestamp,
                )
            )
            await session.commit()


async def record_safely(recorder: Optional[AuditRecorder], entry: AuditEntry) -> bool:
    """Record ``entry``; log and swallow sink failures. Returns True on success."""
    if recorder is None:
        return False
    try:
        await recorder.record(entry)
    except Exception:
        logger.exception(
            "Audit log failed (non-critical)",
            extra={
                "extra_fields": {
                    "audit_action": entry.action,
                    "target_ids": entry.target_ids,
                }
            },
        )
        return False
    return True
