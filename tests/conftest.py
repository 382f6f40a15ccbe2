"""
Pytest configuration and fixtures for Offboard tests.

Provides:
- Async test database with SQLite
- Test client for API testing
- A fake directory adapter and token provider for the dispatcher
- Factory fixtures for creating test data
"""

import uuid
from collections.abc import AsyncGenerator
from contextlib import nullcontext
from datetime import datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from cryptography.fernet import Fernet, MultiFernet
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from offboard.config import PollerConfig
from offboard.core import security
from offboard.core.database import get_db
from offboard.core.datetime_utils import utc_now
from offboard.core.tenant import TenantContext
from offboard.directory.actions import ActionOutcome, ActionType
from offboard.engine.dispatcher import Dispatcher, get_dispatcher
from offboard.engine.executor import ExecutionEngine
from offboard.main import app
from offboard.models import Base
from offboard.models.scheduled_action import ScheduledAction, ScheduleStatus

# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_ENCRYPTION_KEY = "4PfkzbaMAeZ2QcaZhdx8dubPUOHb1WPAgDLfEvvLd30="


class FakeDirectoryAdapter:
    """Stands in for DirectoryActionAdapter; records every call.

    Set ``outcomes[action]`` to an ActionOutcome or an exception to control
    what an action reports. Unlisted actions succeed.
    """

    def __init__(self) -> None:
        self.calls: list[ActionType] = []
        self.tokens: list[str] = []
        self.outcomes: dict[ActionType, ActionOutcome | Exception] = {}

    def connect(self, access_token: str) -> Any:
        self.tokens.append(access_token)
        return nullcontext(None)

    async def run(self, action: ActionType, graph: Any, user: Any, options: Any) -> ActionOutcome:
        self.calls.append(action)
        outcome = self.outcomes.get(action, ActionOutcome.success(f"{action.value} done"))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture(autouse=True)
def credentials_cipher(monkeypatch) -> MultiFernet:
    """Encrypt stored tenant credentials with a fixed test key."""
    cipher = MultiFernet([Fernet(TEST_ENCRYPTION_KEY)])
    monkeypatch.setattr(security, "get_cipher", lambda: cipher)
    return cipher


@pytest_asyncio.fixture
async def db_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_maker(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine, configured like AsyncSessionLocal."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def tenant_ctx() -> TenantContext:
    return TenantContext(tenant_id="tenant-a", session_id="session-a", actor_id="admin@tenant-a.com")


@pytest.fixture
def other_tenant_ctx() -> TenantContext:
    return TenantContext(tenant_id="tenant-b", session_id="session-b", actor_id="admin@tenant-b.com")


@pytest.fixture
def fake_adapter() -> FakeDirectoryAdapter:
    return FakeDirectoryAdapter()


@pytest.fixture
def mock_token_provider() -> AsyncMock:
    provider = AsyncMock()
    provider.get_access_token.return_value = "test-access-token"
    return provider


@pytest.fixture
def dispatcher(session_maker, mock_token_provider, fake_adapter) -> Dispatcher:
    return Dispatcher(
        session_factory=session_maker,
        token_provider=mock_token_provider,
        engine=ExecutionEngine(fake_adapter),
        config=PollerConfig({"max_concurrency": 1}),
    )


@pytest_asyncio.fixture
async def client(session_maker, dispatcher) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client; each request gets its own committed session."""

    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ============================================================================
# Factory Fixtures
# ============================================================================


def make_target_user(user_id: str | None = None, display_name: str = "Jane Leaver") -> dict[str, Any]:
    user_id = user_id or str(uuid.uuid4())
    return {
        "id": user_id,
        "display_name": display_name,
        "mail": "jane.leaver@contoso.com",
        "user_principal_name": "jane.leaver@contoso.com",
        "department": "Sales",
        "job_title": "Account Executive",
    }


@pytest_asyncio.fixture
async def scheduled_action_factory(db_session: AsyncSession, tenant_ctx: TenantContext):
    """Factory for committed scheduled action records (bypasses validation)."""

    async def _create(
        ctx: TenantContext | None = None,
        actions: list[str] | None = None,
        scheduled_at: datetime | None = None,
        status: ScheduleStatus = ScheduleStatus.SCHEDULED,
        execution_log: dict | None = None,
        executed_at: datetime | None = None,
        executed_by: str | None = None,
        notes: str | None = "Last day Friday",
    ) -> ScheduledAction:
        ctx = ctx or tenant_ctx
        target = make_target_user()
        record = ScheduledAction(
            tenant_id=ctx.tenant_id,
            session_id=ctx.session_id,
            created_by=ctx.actor_id,
            target_user_id=target["id"],
            target_user=target,
            scheduled_at=scheduled_at or utc_now() - timedelta(minutes=1),
            timezone="UTC",
            actions=actions or ["disableAccount", "revokeLicenses"],
            options={},
            notes=notes,
            status=status,
            execution_log=execution_log,
            executed_at=executed_at,
            executed_by=executed_by,
        )
        db_session.add(record)
        await db_session.commit()
        return record

    return _create


@pytest.fixture
def failed_log() -> dict[str, Any]:
    """A stored execution log with one success and one failure."""
    now = utc_now()
    return {
        "start_time": (now - timedelta(minutes=5)).isoformat(),
        "end_time": (now - timedelta(minutes=4)).isoformat(),
        "action_results": [
            {"action": "disableAccount", "status": "success", "detail": "Sign-in disabled", "items": []},
            {"action": "revokeLicenses", "status": "failed", "error": "403 Forbidden", "items": []},
        ],
        "total_actions": 2,
        "successful_actions": 1,
        "failed_actions": 1,
        "skipped_actions": 0,
        "error": None,
    }
