"""Tests for database connection and schema initialization."""

from unittest.mock import patch

import pytest

from doc_search.db.backend import VectorDatabase
from doc_search.db.connection import create_connection
from doc_search.db.sqlite_backend import SQLiteBackend


@pytest.mark.asyncio
async def test_create_in_memory_connection():
    db = await create_connection(":memory:")
    try:
        cursor = await db.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
        tables = {row[0] for row in await cursor.fetchall()}
        assert {"organizations", "documents", "document_vectors", "maintenance_log"} <= tables
        assert "schema_version" in tables
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_in_memory_ignores_database_url():
    """An explicit :memory: path always means SQLite, even with a Postgres URL set."""
    with patch.dict("os.environ", {"DOCSEARCH_DATABASE_URL": "postgresql://nowhere/db"}):
        db = await create_connection(":memory:")
    try:
        assert isinstance(db, SQLiteBackend)
        assert isinstance(db, VectorDatabase)
        assert db.name == "sqlite-vec"
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_schema_version():
    db = await create_connection(":memory:")
    try:
        cursor = await db.execute("SELECT version FROM schema_version")
        row = await cursor.fetchone()
        assert row[0] == 1
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_schema_reapply_is_idempotent(db):
    await db.apply_schema()
    cursor = await db.execute("SELECT COUNT(*) FROM schema_version")
    row = await cursor.fetchone()
    assert row[0] == 1


@pytest.mark.asyncio
async def test_sqlite_vec_loaded(db):
    cursor = await db.execute("SELECT vec_version()")
    row = await cursor.fetchone()
    assert row[0]


@pytest.mark.asyncio
async def test_file_database_creates_parent_dirs(tmp_path):
    path = tmp_path / "nested" / "dir" / "documents.db"
    with patch.dict("os.environ", {}, clear=True):
        db = await create_connection(path)
    try:
        assert path.parent.exists()
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_vectors_have_no_foreign_key_to_documents(db):
    """Vectors may outlive their document; cleanup finds them later."""
    await db.vector_upsert(
        "ghost_chunk_0",
        document_id="ghost",
        chunk_index=0,
        organization_id="org-1",
        embedding=[1.0, 0.0, 0.0],
        metadata={},
    )
    cursor = await db.execute("SELECT COUNT(*) FROM document_vectors")
    row = await cursor.fetchone()
    assert row[0] == 1
