"""
Record Store: Database Connection and Session Management

This module owns the async engine and session factory behind an explicit
store handle. The application creates one RecordStore at startup and passes
it around (via app.state); nothing here is module-level mutable state.

Key Features:
- Database abstraction: the adapter supplies all backend-specific options
- Idempotent connect(): lazily builds the engine on first use and reuses it
- Async session management: commit on success, rollback on exception
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from shortener.db import models  # noqa: F401  (registers tables on SQLModel.metadata)
from shortener.db.interface import DatabaseAdapter
from shortener.db.sqlite_adapter import get_database_adapter

logger = logging.getLogger(__name__)


class RecordStore:
    """
    Process-wide handle on the durable store of users and short links.

    Usage:
        store = RecordStore(settings.DATABASE_URL)
        await store.connect()
        async with store.session() as session:
            ...
        await store.dispose()
    """

    def __init__(
        self,
        database_url: str,
        adapter: Optional[DatabaseAdapter] = None,
        create_tables: bool = True
    ):
        """
        Args:
            database_url: Async SQLAlchemy connection string
            adapter: Backend adapter (picked from the URL when omitted)
            create_tables: Run SQLModel.metadata.create_all on first connect
        """
        self.database_url = database_url
        self.adapter = adapter or get_database_adapter(database_url)
        self.create_tables = create_tables

        self._engine: Optional[AsyncEngine] = None
        self._session_maker: Optional[async_sessionmaker] = None
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("RecordStore is not connected; call connect() first")
        return self._engine

    async def connect(self) -> "RecordStore":
        """
        Connect to the database, or reuse the existing connection.

        Safe to call any number of times and from concurrent tasks; only the
        first call builds the engine (and creates tables if configured).
        """
        if self._engine is not None:
            return self

        async with self._lock:
            if self._engine is not None:
                return self

            logger.info(f"Connecting record store ({self.adapter.get_dialect_name()})")
            engine = self.adapter.create_engine(self.database_url)

            if self.create_tables:
                async with engine.begin() as conn:
                    await conn.run_sync(SQLModel.metadata.create_all)

            self._session_maker = async_sessionmaker(
                engine,
                class_=AsyncSession,
                expire_on_commit=False,  # Keep loaded attributes usable after commit
                autoflush=False,
            )
            self._engine = engine
            logger.info("Record store connected")

        return self

    def session(self) -> AsyncSession:
        """Create a new session. The store must be connected."""
        if self._session_maker is None:
            raise RuntimeError("RecordStore is not connected; call connect() first")
        return self._session_maker()

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Session scope that commits on success and rolls back on any exception.

        Connects lazily, so callers never need to check is_connected.
        """
        await self.connect()
        async with self.session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def dispose(self) -> None:
        """Close all pooled connections. The store can be connected again later."""
        async with self._lock:
            if self._engine is None:
                return
            await self._engine.dispose()
            self._engine = None
            self._session_maker = None
            logger.info("Record store disposed")
