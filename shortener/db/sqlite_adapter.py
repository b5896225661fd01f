"""
SQLite Database Adapter

This module implements the DatabaseAdapter interface for SQLite.
All SQLite-specific configuration and behavior is encapsulated here.

Key characteristics:
- File-based (single .db file), or in-memory for throwaway stores
- No server required
- Single writer at a time (file locking)
- Supports the partial unique index the short_links table relies on
"""

from typing import Any, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool, Pool, StaticPool

from shortener.db.interface import DatabaseAdapter


class SQLiteAdapter(DatabaseAdapter):
    """SQLite database adapter implementation."""

    def create_engine(self, database_url: str, **kwargs) -> AsyncEngine:
        """
        Create SQLite async engine with appropriate configuration.

        Args:
            database_url: SQLite connection string (sqlite+aiosqlite:///...)
            **kwargs: Additional engine options (merged with SQLite defaults)

        Returns:
            Configured AsyncEngine for SQLite
        """
        engine_kwargs = self.get_engine_kwargs()
        engine_kwargs.update(kwargs)

        return create_async_engine(
            database_url,
            poolclass=self.get_pool_class(database_url),
            connect_args=self.get_connect_args(),
            **engine_kwargs
        )

    def get_pool_class(self, database_url: str) -> Optional[type[Pool]]:
        """
        Get the connection pool class for SQLite.

        File databases use NullPool: SQLite handles one writer at a time and
        gains nothing from pooling. In-memory databases live only as long as
        their connection, so they need StaticPool to keep a single one.
        """
        if self.is_memory_database(database_url):
            return StaticPool
        return NullPool

    def get_connect_args(self) -> dict[str, Any]:
        return {
            "check_same_thread": False
        }

    def get_engine_kwargs(self) -> dict[str, Any]:
        return {
            "echo": False  # Set to True only for SQL debugging in development
        }

    def get_dialect_name(self) -> str:
        return "sqlite"

    @staticmethod
    def is_memory_database(database_url: str) -> bool:
        database = make_url(database_url).database
        return not database or database == ":memory:"


def get_database_adapter(database_url: str = "") -> DatabaseAdapter:
    """
    Factory function to get the database adapter for a connection string.

    Only SQLite ships today; any other dialect is rejected up front rather than
    failing later with a driver error.

    Raises:
        ValueError: If the URL names an unsupported backend
    """
    if database_url and not make_url(database_url).get_backend_name() == "sqlite":
        raise ValueError(f"Unsupported database backend: {database_url}")
    return SQLiteAdapter()
