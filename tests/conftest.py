"""Shared pytest fixtures: a throwaway SQLite store per test, users, registry and API client."""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from shortener.core.rate_limit import limiter
from shortener.core.setting import Tier
from shortener.db.models import User
from shortener.db.session import RecordStore
from shortener.main import app
from shortener.services.access_gate import AccessGate
from shortener.services.link_registry import LinkRegistry

limiter.enabled = False


class FakeClock:
    """Controllable replacement for utcnow()."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def store(tmp_path) -> AsyncGenerator[RecordStore, None]:
    record_store = RecordStore(f"sqlite+aiosqlite:///{tmp_path / 'shortener_test.db'}")
    await record_store.connect()
    yield record_store
    await record_store.dispose()


@pytest_asyncio.fixture
async def session(store: RecordStore) -> AsyncGenerator[AsyncSession, None]:
    async with store.session() as db_session:
        yield db_session


@pytest_asyncio.fixture
async def registry(session: AsyncSession, clock: FakeClock) -> LinkRegistry:
    return LinkRegistry(session, clock=clock)


async def _register(store: RecordStore, name: str, tier: Tier) -> User:
    async with store.session() as db_session:
        return await AccessGate(db_session).register_user(name, tier)


@pytest_asyncio.fixture
async def alice(store: RecordStore) -> User:
    return await _register(store, "alice", Tier.standard)


@pytest_asyncio.fixture
async def bob(store: RecordStore) -> User:
    return await _register(store, "bob", Tier.standard)


@pytest_asyncio.fixture
async def enterprise_user(store: RecordStore) -> User:
    return await _register(store, "acme", Tier.enterprise)


@pytest_asyncio.fixture
async def client(store: RecordStore) -> AsyncGenerator[AsyncClient, None]:
    original_store = app.state.store
    app.state.store = store

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.state.store = original_store
