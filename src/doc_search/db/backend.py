"""Protocols the store and search layers use to reach SQLite or Postgres.

Document and maintenance queries are plain SQL with ``?`` placeholders.
Similarity search is a backend method, since pgvector and sqlite-vec spell
cosine distance differently.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from doc_search.models.search import SearchFilters


@runtime_checkable
class Row(Protocol):
    """Row readable by column name or index."""

    def __getitem__(self, key: str | int) -> Any:
        """Value of one column."""
        ...

    def keys(self) -> Any:
        """Column names, in select order."""
        ...


@runtime_checkable
class Cursor(Protocol):
    """Result of ``Database.execute``."""

    @property
    def rowcount(self) -> int:
        """Rows changed by an INSERT, UPDATE or DELETE."""
        ...

    async def fetchone(self) -> Row | None:
        """Next row, None when there are no more."""
        ...

    async def fetchall(self) -> list[Row]:
        """Every row not yet fetched."""
        ...


@runtime_checkable
class Database(Protocol):
    """Connection to the document database.

    SQL is written for SQLite with ``?`` placeholders; the Postgres backend
    rewrites placeholders to ``$N`` before running it.
    """

    async def execute(self, sql: str, params: tuple[Any, ...] | list[Any] = ()) -> Cursor:
        """Run one statement."""
        ...

    async def executescript(self, sql: str) -> None:
        """Run a semicolon-separated batch, used for DDL."""
        ...

    async def commit(self) -> None:
        """Make pending writes durable."""
        ...

    async def close(self) -> None:
        """Release the connection or pool."""
        ...


@dataclass
class VectorRow:
    """One row returned by a similarity query."""

    id: str
    document_id: str
    chunk_index: int
    similarity: float
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class VectorDatabase(Database, Protocol):
    """A Database that also stores embeddings and answers cosine-similarity queries."""

    name: str

    async def vector_query(
        self,
        embedding: list[float],
        filters: SearchFilters,
        *,
        min_score: float,
        limit: int,
    ) -> list[VectorRow]:
        """Nearest chunks by cosine similarity, best first, above ``min_score``."""
        ...

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
        ...

    async def vector_delete_document(self, document_id: str, organization_id: str) -> int:
        """Delete every vector of a document. Returns the number removed."""
        ...

    async def optimize_vectors(self) -> list[str]:
        """Rebuild the similarity index and refresh planner statistics."""
        ...

    async def vector_table_size(self) -> str | None:
        """Human-readable storage size of the vector table, if known."""
        ...
