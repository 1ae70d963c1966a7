"""Database connection and schema management."""

from doc_search.db.backend import Cursor, Database, Row, VectorDatabase, VectorRow
from doc_search.db.postgres_backend import PostgresBackend
from doc_search.db.sqlite_backend import SQLiteBackend

__all__ = [
    "Cursor",
    "Database",
    "PostgresBackend",
    "Row",
    "SQLiteBackend",
    "VectorDatabase",
    "VectorRow",
]
