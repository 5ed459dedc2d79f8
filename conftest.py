import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from dotenv import load_dotenv

# Optional developer overrides; the suite itself runs on SQLite
env_test_path = os.path.join(os.path.dirname(__file__), ".env.test")
if os.path.exists(env_test_path):
    load_dotenv(env_test_path, override=False)

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("ENVIRONMENT", "development")

from libs.common.config import get_settings
from libs.db.base import Base

# Import all models so metadata includes every table
from libs.audit import models as _audit_models  # noqa: F401
from services.enrollment_service import models as _enrollment_models  # noqa: F401
from services.settlement_service import models as _settlement_models  # noqa: F401

# Clear cached settings to reload with new env vars
get_settings.cache_clear()


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """
    A fresh file-backed SQLite database per test.

    A file (rather than ``:memory:``) lets several sessions see each other's
    commits, which the audit and concurrency tests rely on.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def override_settings(monkeypatch):
    """Set environment-backed settings for one test and reload them."""

    def _apply(**values):
        for key, value in values.items():
            monkeypatch.setenv(key, str(value))
        get_settings.cache_clear()

    yield _apply
    get_settings.cache_clear()
