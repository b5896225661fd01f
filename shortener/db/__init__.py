"""
Database module with abstraction layer.

This module provides:
- DatabaseAdapter interface: Abstract base class for database implementations
- SQLiteAdapter: SQLite-specific implementation (default)
- RecordStore: explicit store handle owning the engine and session factory

To add a new database backend:
1. Create a new adapter class inheriting from DatabaseAdapter
2. Implement all abstract methods
3. Update get_database_adapter() in sqlite_adapter.py to return the new adapter
"""

from shortener.db.interface import DatabaseAdapter
from shortener.db.session import RecordStore

__all__ = [
    "DatabaseAdapter",
    "RecordStore",
]
