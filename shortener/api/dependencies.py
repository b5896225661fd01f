"""
FastAPI dependencies.

Wires the request to the record store on app.state, a per-request session,
the resolved caller and a LinkRegistry bound to that session.
"""

from typing import AsyncGenerator, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shortener.db.models import User
from shortener.db.session import RecordStore
from shortener.services.access_gate import AccessGate
from shortener.services.link_registry import LinkRegistry


async def get_store(request: Request) -> RecordStore:
    store: RecordStore = request.app.state.store
    return await store.connect()


async def get_session(store: RecordStore = Depends(get_store)) -> AsyncGenerator[AsyncSession, None]:
    """
    Session per request: commits on success, rolls back on exception.

    Usage in FastAPI:
        @router.get("/endpoint")
        async def endpoint(session: AsyncSession = Depends(get_session)):
            ...
    """
    async with store.transaction() as session:
        yield session


async def get_caller(
    x_api_key: Optional[str] = Header(default=None, description="API key of the caller"),
    session: AsyncSession = Depends(get_session)
) -> Optional[User]:
    return await AccessGate(session).resolve(x_api_key)


async def get_registry(session: AsyncSession = Depends(get_session)) -> LinkRegistry:
    return LinkRegistry.from_settings(session)
