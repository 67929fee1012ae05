"""Pytest configuration and fixtures for backend tests."""

import copy
import logging
import os
import tempfile
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import fakeredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import outreach.db.redis as redis_module
from outreach.api.deps import get_billing, get_outbound, get_session_factory, get_telephony
from outreach.db.base import Base
from outreach.db.redis import get_redis
from outreach.db.session import get_db
from outreach.main import app
from outreach.models import (
    Campaign,
    CampaignQueueItem,
    Contact,
    Script,
    Workspace,
)
from outreach.models.campaign import CampaignStatus, CampaignType, DialType
from outreach.services.outbound import PlacementResult

logger = logging.getLogger(__name__)

CALLER = "caller-1"


@pytest_asyncio.fixture(scope="function")
async def test_engine() -> AsyncGenerator[Any, None]:
    """Create test database engine with fresh database for each test."""
    # Create a unique temp file for each test to ensure complete isolation
    test_db_fd, test_db_path = tempfile.mkstemp(suffix=".db")
    os.close(test_db_fd)
    test_db_url = f"sqlite+aiosqlite:///{test_db_path}"

    engine = create_async_engine(
        test_db_url,
        echo=False,
        poolclass=NullPool,
    )

    # Enable foreign keys for SQLite
    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection: Any, _connection_record: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()

    # Clean up temp database file
    try:
        db_path = Path(test_db_path)
        if db_path.exists():
            db_path.unlink()
    except Exception as e:
        logger.debug("Failed to clean up test database: %s", e)


@pytest.fixture
def session_factory(test_engine: Any) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def test_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(autouse=True)
async def test_redis() -> Any:
    """Shared fake async Redis installed as the process-wide client.

    Every ``get_redis()`` call (call registry, change feed) resolves to it.
    """
    redis = fakeredis.FakeAsyncRedis(decode_responses=True)
    redis_module.redis_client = redis
    yield redis
    redis_module.redis_client = None
    redis_module.redis_pool = None
    await redis.aclose()


# =============================================================================
# Factories
# =============================================================================


@pytest_asyncio.fixture
async def workspace(test_session: AsyncSession) -> Workspace:
    ws = Workspace(name="Test Workspace")
    test_session.add(ws)
    await test_session.commit()
    return ws


CampaignFactory = Callable[..., Awaitable[Campaign]]
QueueFactory = Callable[..., Awaitable[list[CampaignQueueItem]]]


@pytest.fixture
def make_campaign(test_session: AsyncSession, workspace: Workspace) -> CampaignFactory:
    """Create an active campaign. Keyword arguments override columns."""

    async def factory(**overrides: Any) -> Campaign:
        values: dict[str, Any] = {
            "workspace_id": workspace.id,
            "title": "Test Campaign",
            "type": CampaignType.LIVE_CALL,
            "dial_type": DialType.POWER,
            "status": CampaignStatus.RUNNING,
            "is_active": True,
            "caller_id": "+15550000000",
        }
        values.update(overrides)
        campaign = Campaign(**values)
        test_session.add(campaign)
        await test_session.commit()
        return campaign

    return factory


@pytest.fixture
def make_queue(test_session: AsyncSession, workspace: Workspace) -> QueueFactory:
    """Enqueue contacts for a campaign.

    Each contact is a dict of Contact columns plus optional ``attempts``,
    ``queue_order`` and ``status`` for the queue row. Queue order follows
    list order unless given.
    """

    async def factory(campaign: Campaign, contacts: list[dict[str, Any]]) -> list[CampaignQueueItem]:
        items: list[CampaignQueueItem] = []
        for position, values in enumerate(contacts):
            values = dict(values)
            queue_values = {
                "attempts": values.pop("attempts", 0),
                "queue_order": values.pop("queue_order", position),
                "status": values.pop("status", "queued"),
            }
            values.setdefault("phone", f"+1555000{position:04d}")
            contact = Contact(workspace_id=workspace.id, **values)
            test_session.add(contact)
            await test_session.flush()
            item = CampaignQueueItem(campaign_id=campaign.id, contact_id=contact.id, **queue_values)
            test_session.add(item)
            items.append(item)
        await test_session.commit()
        return items

    return factory


SIMPLE_SCRIPT: dict[str, Any] = {
    "pages": {
        "page_1": {"id": "page_1", "title": "Intro", "blocks": ["b1", "b2"]},
        "page_2": {"id": "page_2", "title": "Voicemail", "blocks": ["vm"], "speechType": "synthetic"},
    },
    "blocks": {
        "b1": {
            "id": "b1",
            "type": "synthetic",
            "title": "Support",
            "content": "Press 1 if you support us",
            "options": [
                {"value": "1", "next": "b2", "content": "Yes"},
                {"value": "2", "next": "hangup", "content": "No"},
            ],
        },
        "b2": {"id": "b2", "type": "synthetic", "title": "Thanks", "content": "Thank you", "options": []},
        "vm": {"id": "vm", "type": "synthetic", "title": "Voicemail", "content": "Sorry we missed you"},
    },
}


@pytest.fixture
def script_steps() -> dict[str, Any]:
    """A fresh copy of the survey script document, safe to mutate."""
    return copy.deepcopy(SIMPLE_SCRIPT)


@pytest_asyncio.fixture
async def script(test_session: AsyncSession, workspace: Workspace, script_steps: dict[str, Any]) -> Script:
    record = Script(workspace_id=workspace.id, name="Survey", steps=script_steps)
    test_session.add(record)
    await test_session.commit()
    return record


# =============================================================================
# Collaborator doubles
# =============================================================================


@pytest.fixture
def outbound() -> MagicMock:
    """Dialer/messenger double returning sequential sids."""
    counter = {"n": 0}

    async def place(request: Any) -> PlacementResult:
        counter["n"] += 1
        return PlacementResult(sid=f"CA{counter['n']:04d}", status="queued")

    mock = MagicMock()
    mock.place_call = AsyncMock(side_effect=place)
    mock.send_message = AsyncMock(
        side_effect=lambda request: PlacementResult(sid=f"SM{request.contact_id:04d}", status="queued")
    )
    mock.aclose = AsyncMock()
    return mock


@pytest.fixture
def billing() -> MagicMock:
    mock = MagicMock()
    mock.debit = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def telephony() -> MagicMock:
    mock = MagicMock()
    mock.hangup = AsyncMock(return_value=True)
    mock.redirect = AsyncMock(return_value=True)
    return mock


@pytest_asyncio.fixture(scope="function")
async def test_client(
    session_factory: async_sessionmaker[AsyncSession],
    test_redis: Any,
    outbound: MagicMock,
    billing: MagicMock,
    telephony: MagicMock,
) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with dependency overrides.

    Each request gets its own session, as in production, so the test
    session sees committed state only after ``refresh``.
    """

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session
            await session.commit()

    async def override_get_redis() -> Any:
        return test_redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_outbound] = lambda: outbound
    app.dependency_overrides[get_billing] = lambda: billing
    app.dependency_overrides[get_telephony] = lambda: telephony

    transport = ASGITransport(app=app)  # type: ignore[arg-type]
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
