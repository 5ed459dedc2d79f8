from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from libs.audit.recorder import AuditRecorder, DatabaseAuditRecorder
from libs.db.session import get_session_factory


def get_audit_recorder(
    session_factory: Annotated[
        async_sessionmaker[AsyncSession], Depends(get_session_factory)
    ],
) -> AuditRecorder:
    """FastAPI dependency for the audit sink; tests override it."""
    return DatabaseAuditRecorder(session_factory)
