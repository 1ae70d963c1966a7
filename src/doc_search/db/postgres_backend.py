"""PostgreSQL implementation of the VectorDatabase protocol.

Uses asyncpg for async access and pgvector for embeddings. All application
SQL uses ``?`` placeholders; this backend translates them to ``$N`` at
execute time. Vector SQL is written natively below.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from doc_search.db.backend import VectorRow

if TYPE_CHECKING:
    import asyncpg

    from doc_search.db.backend import Cursor, Row
    from doc_search.models.search import SearchFilters

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\?")

VECTOR_INDEX_NAME = "idx_document_vectors_embedding_cosine"


def _translate_placeholders(sql: str) -> str:
    """Rewrite ``?`` placeholders as numbered ``$N`` ones."""
    counter = 0

    def _replace(_match: re.Match[str]) -> str:
        nonlocal counter
        counter += 1
        return f"${counter}"

    return _PLACEHOLDER_RE.sub(_replace, sql)


def _vector_literal(embedding: list[float]) -> str:
    return "[" + ",".join(str(v) for v in embedding) + "]"


def _build_vector_query(
    embedding: list[float], filters: SearchFilters, *, min_score: float, limit: int
) -> tuple[str, list[Any]]:
    """Build the pgvector cosine query and its positional parameters."""
    params: list[Any] = [_vector_literal(embedding), filters.organization_id]
    conditions = ["organization_id = $2"]

    def _param(value: Any) -> str:
        params.append(value)
        return f"${len(params)}"

    if filters.document_id:
        conditions.append(f"document_id = {_param(filters.document_id)}")
    elif filters.document_ids:
        conditions.append(f"document_id = ANY({_param(list(filters.document_ids))}::text[])")

    if filters.document_types:
        conditions.append(
            f"metadata->>'documentType' = ANY({_param(list(filters.document_types))}::text[])"
        )
    if filters.naics_codes:
        conditions.append(f"metadata->'naicsCodes' ?| {_param(list(filters.naics_codes))}::text[]")
    if filters.tags:
        conditions.append(f"metadata->'tags' ?| {_param(list(filters.tags))}::text[]")
    if filters.date_range:
        start = _param(filters.date_range.start.timestamp())
        end = _param(filters.date_range.end.timestamp())
        conditions.append(f"(metadata->>'createdAt')::double precision BETWEEN {start} AND {end}")

    min_param = _param(min_score)
    limit_param = _param(limit)
    sql = f"""
        SELECT id, document_id, chunk_index, metadata,
               1 - (embedding <=> $1::vector) AS similarity
        FROM document_vectors
        WHERE {" AND ".join(conditions)}
          AND 1 - (embedding <=> $1::vector) >= {min_param}
        ORDER BY embedding <=> $1::vector, document_id, chunk_index
        LIMIT {limit_param}
    """
    return sql, params


class PostgresRow:
    """Row protocol over an asyncpg Record."""

    def __init__(self, record: asyncpg.Record) -> None:
        """Wrap one record."""
        self._record = record

    def __getitem__(self, key: str | int) -> Any:
        """Value of one column."""
        return self._record[key]

    def keys(self) -> list[str]:
        """Column names, in select order."""
        return list(self._record.keys())


class PostgresCursor:
    """Cursor protocol over rows asyncpg already fetched.

    asyncpg hands back whole result lists, so "fetching" just walks the list.
    """

    def __init__(self, rows: list[asyncpg.Record], status: str | None = None) -> None:
        """Hold fetched rows, or the command status of a write."""
        self._rows = rows
        self._index = 0
        self._rowcount = self._parse_rowcount(status)

    @property
    def rowcount(self) -> int:
        """Rows changed by the write, parsed from its status."""
        return self._rowcount

    async def fetchone(self) -> Row | None:
        """Next row, None when there are no more."""
        if self._index >= len(self._rows):
            return None
        row = PostgresRow(self._rows[self._index])
        self._index += 1
        return row

    async def fetchall(self) -> list[Row]:
        """Every row not yet fetched."""
        remaining: list[Row] = [PostgresRow(r) for r in self._rows[self._index :]]
        self._index = len(self._rows)
        return remaining

    @staticmethod
    def _parse_rowcount(status: str | None) -> int:
        """Row count from a command status such as ``DELETE 4`` (-1 when absent)."""
        if not status:
            return -1
        parts = status.split()
        if len(parts) >= 2:
            try:
                return int(parts[-1])
            except ValueError:
                pass
        return -1


class PostgresBackend:
    """PostgreSQL implementation of the VectorDatabase protocol.

    Statements borrow a pooled connection for their duration, with
    placeholders rewritten to ``$N``.
    ``commit()`` is a no-op; asyncpg auto-commits each statement.
    """

    name = "pgvector"

    def __init__(self, pool: asyncpg.Pool) -> None:
        """Use ``pool`` for every statement."""
        self._pool = pool

    @classmethod
    async def create(cls, url: str) -> PostgresBackend:
        """Open a pool for ``url``."""
        import asyncpg as _asyncpg

        pool = await _asyncpg.create_pool(url, min_size=2, max_size=10)
        return cls(pool)

    async def execute(self, sql: str, params: tuple[Any, ...] | list[Any] = ()) -> Cursor:
        """Run one statement on a pooled connection."""
        pg_sql = _translate_placeholders(sql)
        async with self._pool.acquire() as conn:
            stmt = await conn.prepare(pg_sql)
            if stmt.get_attributes():
                rows = await conn.fetch(pg_sql, *params)
                return PostgresCursor(rows)
            status = await conn.execute(pg_sql, *params)
            return PostgresCursor([], status=status)

    async def executescript(self, sql: str) -> None:
        """Run a DDL batch on one pooled connection."""
        async with self._pool.acquire() as conn:
            await conn.execute(sql)

    async def commit(self) -> None:
        """No-op; asyncpg auto-commits each statement."""

    async def close(self) -> None:
        """Close every pooled connection."""
        await self._pool.close()

    # -- pgvector similarity --

    async def vector_query(
        self,
        embedding: list[float],
        filters: SearchFilters,
        *,
        min_score: float,
        limit: int,
    ) -> list[VectorRow]:
        """KNN search via pgvector cosine distance, thresholded in SQL."""
        sql, params = _build_vector_query(embedding, filters, min_score=min_score, limit=limit)
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(sql, *params)
        results = []
        for row in rows:
            metadata = row["metadata"]
            if isinstance(metadata, str):
                metadata = json.loads(metadata)
            results.append(
                VectorRow(
                    id=row["id"],
                    document_id=row["document_id"],
                    chunk_index=row["chunk_index"],
                    similarity=float(row["similarity"]),
                    metadata=metadata or {},
                )
            )
        return results

    async def vector_upsert(
        self,
        vector_id: str,
        *,
        document_id: str,
        chunk_index: int,
        organization_id: str,
        embedding: list[float],
        metadata: dict[str, Any],
    ) -> None:
        """Insert or replace the embedding for one chunk."""
        now = datetime.now(UTC)
        async with self._pool.acquire() as conn:
            await conn.execute(
                """INSERT INTO document_vectors
                   (id, document_id, chunk_index, organization_id, embedding, metadata,
                    created_at, updated_at)
                   VALUES ($1, $2, $3, $4, $5::vector, $6::jsonb, $7, $7)
                   ON CONFLICT (document_id, chunk_index) DO UPDATE SET
                       embedding = EXCLUDED.embedding,
                       metadata = EXCLUDED.metadata,
                       updated_at = EXCLUDED.updated_at""",
                vector_id,
                document_id,
                chunk_index,
                organization_id,
                _vector_literal(embedding),
                json.dumps(metadata),
                now,
            )

    async def vector_delete_document(self, document_id: str, organization_id: str) -> int:
        """Delete every vector of a document. Returns the number removed."""
        async with self._pool.acquire() as conn:
            status = await conn.execute(
                "DELETE FROM document_vectors WHERE document_id = $1 AND organization_id = $2",
                document_id,
                organization_id,
            )
        return max(PostgresCursor._parse_rowcount(status), 0)

    # -- Maintenance --

    async def optimize_vectors(self) -> list[str]:
        """Rebuild the ivfflat index and refresh planner statistics."""
        async with self._pool.acquire() as conn:
            await conn.execute(f"REINDEX INDEX {VECTOR_INDEX_NAME}")
            await conn.execute("ANALYZE document_vectors")
        return [
            f"Rebuilt vector index {VECTOR_INDEX_NAME}",
            "Updated table statistics for query planner",
        ]

    async def vector_table_size(self) -> str | None:
        """Total relation size of the vector table, as pg_size_pretty reports it."""
        async with self._pool.acquire() as conn:
            return await conn.fetchval(
                "SELECT pg_size_pretty(pg_total_relation_size('document_vectors'))"
            )

    # -- Schema --

    async def apply_schema(self, *, embedding_dim: int = 1536) -> None:
        """Create the pgvector extension, tables and indexes."""
        async with self._pool.acquire() as conn:
            await conn.execute("CREATE EXTENSION IF NOT EXISTS vector")

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER NOT NULL
                )
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS organizations (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL DEFAULT '',
                    slug TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL
                )
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    id TEXT PRIMARY KEY,
                    organization_id TEXT NOT NULL REFERENCES organizations(id),
                    name TEXT NOT NULL,
                    document_type TEXT,
                    naics_codes TEXT NOT NULL DEFAULT '[]',
                    tags TEXT NOT NULL DEFAULT '[]',
                    chunks TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL
                )
            """)
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_documents_org ON documents(organization_id)"
            )

            # No foreign key to documents: vectors can outlive their document
            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS document_vectors (
                    id TEXT PRIMARY KEY,
                    document_id TEXT NOT NULL,
                    chunk_index INTEGER NOT NULL,
                    organization_id TEXT NOT NULL,
                    embedding vector({embedding_dim}) NOT NULL,
                    metadata JSONB NOT NULL DEFAULT '{{}}'::jsonb,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    UNIQUE(document_id, chunk_index)
                )
            """)
            for idx_sql in [
                "CREATE INDEX IF NOT EXISTS idx_document_vectors_org"
                " ON document_vectors(organization_id)",
                "CREATE INDEX IF NOT EXISTS idx_document_vectors_document"
                " ON document_vectors(document_id)",
                f"CREATE INDEX IF NOT EXISTS {VECTOR_INDEX_NAME}"
                " ON document_vectors USING ivfflat (embedding vector_cosine_ops)"
                " WITH (lists = 100)",
            ]:
                await conn.execute(idx_sql)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS maintenance_log (
                    operation TEXT PRIMARY KEY,
                    completed_at TEXT NOT NULL
                )
            """)

            row = await conn.fetchrow("SELECT version FROM schema_version")
            if row is None:
                await conn.execute("INSERT INTO schema_version (version) VALUES ($1)", 1)
