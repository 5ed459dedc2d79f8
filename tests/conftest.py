from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from libs.audit.dependencies import get_audit_recorder
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.db.session import get_async_db, get_session_factory
from tests.factories import RecordingAuditRecorder

ADMIN = AuthUser(user_id="admin-user", email="ops@example.com", role="admin")


@pytest.fixture
def audit_recorder() -> RecordingAuditRecorder:
    return RecordingAuditRecorder()


@pytest.fixture
def admin_user() -> AuthUser:
    return ADMIN


def _override(app, db_session, session_factory, audit_recorder, admin_user):
    async def _db():
        yield db_session

    app.dependency_overrides[get_async_db] = _db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_audit_recorder] = lambda: audit_recorder
    app.dependency_overrides[require_admin] = lambda: admin_user


@pytest_asyncio.fixture
async def enrollment_client(
    db_session, session_factory, audit_recorder, admin_user
) -> AsyncGenerator[AsyncClient, None]:
    from services.enrollment_service.app.main import app

    _override(app, db_session, session_factory, audit_recorder, admin_user)
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def settlement_client(
    db_session, session_factory, audit_recorder, admin_user
) -> AsyncGenerator[AsyncClient, None]:
    from services.settlement_service.app.main import app

    _override(app, db_session, session_factory, audit_recorder, admin_user)
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
