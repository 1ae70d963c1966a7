"""Secondary vector store adapter over the relational database."""

import logging

from doc_search.db.backend import VectorDatabase, VectorRow
from doc_search.errors import SecondaryStoreError
from doc_search.models.document import Document
from doc_search.models.search import SearchFilters, SearchResult
from doc_search.search.results import RawHit, build_results, chunk_metadata, chunk_vector_id
from doc_search.store.documents import DocumentStore

logger = logging.getLogger(__name__)

BACKEND_NAME = "secondary"


def _to_hit(row: VectorRow) -> RawHit:
    return RawHit(
        chunk_id=row.id,
        document_id=row.document_id,
        chunk_index=row.chunk_index,
        score=row.similarity,
        metadata=row.metadata,
    )


class SecondaryVectorStore:
    """Cosine-similarity search over ``document_vectors`` (pgvector or sqlite-vec)."""

    name = BACKEND_NAME

    def __init__(self, db: VectorDatabase, documents: DocumentStore):
        """Initialize with a vector-capable database and the document store."""
        self.db = db
        self.documents = documents

    @property
    def service_name(self) -> str:
        """Name of the underlying database engine."""
        return self.db.name

    async def search(
        self,
        query: str,
        vector: list[float],
        filters: SearchFilters,
        top_k: int,
        min_score: float,
        *,
        timeout: float | None = None,
    ) -> list[SearchResult]:
        """Up to ``top_k`` results scoring at least ``min_score``, best first.

        ``timeout`` is enforced by the caller's deadline; the database driver
        has no per-query budget of its own here.
        """
        try:
            rows = await self.db.vector_query(vector, filters, min_score=min_score, limit=top_k)
        except Exception as exc:
            raise SecondaryStoreError(f"Secondary search failed: {exc}") from exc

        hits = [_to_hit(row) for row in rows]
        results = await build_results(query, hits, self.documents, backend=BACKEND_NAME)
        return results[:top_k]

    async def ping(self) -> None:
        """Raise if the database cannot be reached."""
        try:
            await self.db.execute("SELECT 1")
        except Exception as exc:
            raise SecondaryStoreError(f"Secondary store unreachable: {exc}") from exc

    async def index_document(self, document: Document, embeddings: list[list[float]]) -> int:
        """Upsert one vector per chunk."""
        if len(embeddings) != len(document.chunks):
            raise ValueError("Need exactly one embedding per chunk")
        for chunk, embedding in zip(document.chunks, embeddings, strict=True):
            await self.db.vector_upsert(
                chunk_vector_id(document.id, chunk.chunk_index),
                document_id=document.id,
                chunk_index=chunk.chunk_index,
                organization_id=document.organization_id,
                embedding=embedding,
                metadata=chunk_metadata(document, chunk),
            )
        return len(document.chunks)

    async def delete_document(self, document_id: str, organization_id: str) -> int:
        """Delete every vector of one document."""
        removed = await self.db.vector_delete_document(document_id, organization_id)
        logger.info("Deleted %d secondary vectors for document %s", removed, document_id)
        return removed
