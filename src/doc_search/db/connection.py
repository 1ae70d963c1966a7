"""Opens the document database: SQLite with sqlite-vec, or Postgres with pgvector."""

import logging
from pathlib import Path

import aiosqlite
import sqlite_vec

from doc_search.config import get_database_url, get_db_path, get_embedding_dim
from doc_search.db.backend import VectorDatabase
from doc_search.db.sqlite_backend import SQLiteBackend

logger = logging.getLogger(__name__)


async def create_connection(
    db_path: Path | str | None = None, *, embedding_dim: int | None = None
) -> VectorDatabase:
    """Open the database and apply its schema.

    A ``postgresql://`` DOCSEARCH_DATABASE_URL selects Postgres; otherwise the
    SQLite file at ``db_path`` (or DOCSEARCH_DB_PATH) is used. ``":memory:"``
    always means a private SQLite database.
    """
    dim = embedding_dim or get_embedding_dim()
    if db_path == ":memory:":
        return await _create_sqlite(":memory:")
    url = get_database_url()
    if url and url.startswith("postgresql"):
        return await _create_postgres(url, embedding_dim=dim)
    return await _create_sqlite(db_path or get_db_path())


async def _create_sqlite(db_path: Path | str) -> VectorDatabase:
    """SQLite file (parent directories created) with sqlite-vec loaded."""
    db_path = str(db_path)

    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row

    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA foreign_keys=ON")

    # Extension loading must run on the aiosqlite worker thread
    try:

        def _load_vec() -> None:
            conn._conn.enable_load_extension(True)
            sqlite_vec.load(conn._conn)
            conn._conn.enable_load_extension(False)

        await conn._execute(_load_vec)  # type: ignore[no-untyped-call]
        logger.debug("sqlite-vec extension loaded")
    except Exception:
        logger.warning("sqlite-vec extension not available; secondary vector search disabled")

    db = SQLiteBackend(conn)
    await db.apply_schema()
    return db


async def _create_postgres(url: str, *, embedding_dim: int) -> VectorDatabase:
    """Postgres pool; the vector column is sized to ``embedding_dim``."""
    from doc_search.db.postgres_backend import PostgresBackend

    db = await PostgresBackend.create(url)
    await db.apply_schema(embedding_dim=embedding_dim)
    return db
