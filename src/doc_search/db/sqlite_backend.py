"""SQLite implementation of the VectorDatabase protocol.

Thin wrapper around aiosqlite.Connection. Cosine similarity comes from the
sqlite-vec extension's ``vec_distance_cosine`` scalar function, evaluated as
a scan over the organization's rows. That is fast enough for local use and
tests.
"""

from __future__ import annotations

import json
import logging
import struct
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from doc_search.db.backend import VectorRow

if TYPE_CHECKING:
    import aiosqlite

    from doc_search.db.backend import Cursor, Row
    from doc_search.models.search import SearchFilters

logger = logging.getLogger(__name__)


def _serialize_f32(vec: list[float]) -> bytes:
    """Packed float32 blob, the format sqlite-vec reads."""
    return struct.pack(f"{len(vec)}f", *vec)


def _placeholders(values: list[Any]) -> str:
    return ", ".join("?" for _ in values)


class SQLiteCursor:
    """Cursor protocol over an aiosqlite cursor."""

    def __init__(self, cursor: aiosqlite.Cursor) -> None:
        """Wrap one aiosqlite cursor."""
        self._cursor = cursor

    @property
    def rowcount(self) -> int:
        """Rows changed by the write (-1 when unknown)."""
        rc = self._cursor.rowcount
        return rc if rc is not None else -1

    async def fetchone(self) -> Row | None:
        """Next row, None when there are no more."""
        return await self._cursor.fetchone()

    async def fetchall(self) -> list[Row]:
        """Every row not yet fetched."""
        return list(await self._cursor.fetchall())


class SQLiteBackend:
    """SQLite implementation of the VectorDatabase protocol.

    SQL runs unchanged on the aiosqlite connection. Vectors live as float32
    blobs in ``document_vectors`` next to their JSON metadata.
    """

    name = "sqlite-vec"

    def __init__(self, conn: aiosqlite.Connection) -> None:
        """Wrap an open connection that already has sqlite-vec loaded."""
        self._conn = conn

    async def execute(self, sql: str, params: tuple[Any, ...] | list[Any] = ()) -> Cursor:
        """Run one statement."""
        cursor = await self._conn.execute(sql, params)
        return SQLiteCursor(cursor)

    async def executescript(self, sql: str) -> None:
        """Run a DDL batch."""
        await self._conn.executescript(sql)

    async def commit(self) -> None:
        """Commit pending writes."""
        await self._conn.commit()

    async def close(self) -> None:
        """Close the aiosqlite connection."""
        await self._conn.close()

    # -- sqlite-vec similarity --

    async def vector_query(
        self,
        embedding: list[float],
        filters: SearchFilters,
        *,
        min_score: float,
        limit: int,
    ) -> list[VectorRow]:
        """Nearest chunks by cosine similarity, best first, above ``min_score``."""
        conditions = ["organization_id = ?"]
        params: list[Any] = [_serialize_f32(embedding), filters.organization_id]

        if filters.document_id:
            conditions.append("document_id = ?")
            params.append(filters.document_id)
        elif filters.document_ids:
            conditions.append(f"document_id IN ({_placeholders(filters.document_ids)})")
            params.extend(filters.document_ids)

        if filters.document_types:
            conditions.append(
                "json_extract(metadata, '$.documentType')"
                f" IN ({_placeholders(filters.document_types)})"
            )
            params.extend(filters.document_types)

        for key, values in (("naicsCodes", filters.naics_codes), ("tags", filters.tags)):
            if values:
                conditions.append(
                    f"EXISTS (SELECT 1 FROM json_each(document_vectors.metadata, '$.{key}')"
                    f" WHERE json_each.value IN ({_placeholders(values)}))"
                )
                params.extend(values)

        if filters.date_range:
            conditions.append("json_extract(metadata, '$.createdAt') >= ?")
            params.append(filters.date_range.start.timestamp())
            conditions.append("json_extract(metadata, '$.createdAt') <= ?")
            params.append(filters.date_range.end.timestamp())

        sql = f"""
            SELECT id, document_id, chunk_index, metadata, similarity FROM (
                SELECT id, document_id, chunk_index, metadata,
                       1 - vec_distance_cosine(embedding, ?) AS similarity
                FROM document_vectors
                WHERE {" AND ".join(conditions)}
            )
            WHERE similarity >= ?
            ORDER BY similarity DESC, document_id, chunk_index
            LIMIT ?
        """
        params.extend([min_score, limit])

        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [
            VectorRow(
                id=row["id"],
                document_id=row["document_id"],
                chunk_index=row["chunk_index"],
                similarity=float(row["similarity"]),
                metadata=json.loads(row["metadata"]),
            )
            for row in rows
        ]

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
        now = datetime.now(UTC).isoformat()
        await self._conn.execute(
            """INSERT INTO document_vectors
            (id, document_id, chunk_index, organization_id, embedding, metadata,
             created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (document_id, chunk_index) DO UPDATE SET
                embedding = excluded.embedding,
                metadata = excluded.metadata,
                updated_at = excluded.updated_at""",
            (
                vector_id,
                document_id,
                chunk_index,
                organization_id,
                _serialize_f32(embedding),
                json.dumps(metadata),
                now,
                now,
            ),
        )
        await self._conn.commit()

    async def vector_delete_document(self, document_id: str, organization_id: str) -> int:
        """Delete every vector of a document. Returns the number removed."""
        cursor = await self._conn.execute(
            "DELETE FROM document_vectors WHERE document_id = ? AND organization_id = ?",
            (document_id, organization_id),
        )
        await self._conn.commit()
        return cursor.rowcount

    # -- Maintenance --

    async def optimize_vectors(self) -> list[str]:
        """Rebuild the vector table's indexes and refresh planner statistics."""
        await self._conn.execute("REINDEX document_vectors")
        await self._conn.execute("ANALYZE document_vectors")
        await self._conn.commit()
        return [
            "Rebuilt indexes on document_vectors",
            "Updated table statistics for query planner",
        ]

    async def vector_table_size(self) -> str | None:
        """Size of the vector table via the dbstat virtual table, when compiled in."""
        try:
            cursor = await self._conn.execute(
                "SELECT SUM(pgsize) FROM dbstat WHERE name = 'document_vectors'"
            )
        except Exception:
            logger.debug("dbstat not available, table size unknown")
            return None
        row = await cursor.fetchone()
        if row is None or row[0] is None:
            return None
        size = row[0]
        if size < 1024 * 1024:
            return f"{size / 1024:.1f} KB"
        return f"{size / (1024 * 1024):.1f} MB"

    # -- Schema --

    async def apply_schema(self) -> None:
        """Apply all SQLite DDL."""
        from doc_search.db.schema import apply_schema

        await apply_schema(self)
