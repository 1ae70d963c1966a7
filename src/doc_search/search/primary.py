"""Primary vector store adapter: organization-namespaced Pinecone queries."""

import logging
from typing import Any, Protocol

from doc_search.errors import DocSearchError, PrimaryStoreError
from doc_search.models.document import Document
from doc_search.models.index import IndexMatch, IndexVector
from doc_search.models.search import SearchFilters, SearchResult
from doc_search.search.namespaces import NamespaceResolver
from doc_search.search.pinecone import VectorIndex
from doc_search.search.results import (
    RawHit,
    build_results,
    chunk_metadata,
    chunk_vector_id,
)
from doc_search.store.documents import DocumentStore

logger = logging.getLogger(__name__)

BACKEND_NAME = "primary"


class VectorStoreAdapter(Protocol):
    """The search contract both vector stores implement identically."""

    name: str

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
        """Up to ``top_k`` results scoring at least ``min_score``, best first."""
        ...

    async def ping(self) -> None:
        """Raise if the store cannot be reached."""
        ...


def build_metadata_filter(filters: SearchFilters) -> dict[str, Any]:
    """Translate SearchFilters into a Pinecone metadata filter.

    The organization is not part of the filter: the namespace already scopes it.
    A single ``document_id`` takes precedence over ``document_ids``.
    """
    clauses: dict[str, Any] = {}
    if filters.document_id:
        clauses["documentId"] = {"$eq": filters.document_id}
    elif filters.document_ids:
        clauses["documentId"] = {"$in": list(filters.document_ids)}
    if filters.document_types:
        clauses["documentType"] = {"$in": list(filters.document_types)}
    if filters.naics_codes:
        clauses["naicsCodes"] = {"$in": list(filters.naics_codes)}
    if filters.tags:
        clauses["tags"] = {"$in": list(filters.tags)}
    if filters.date_range:
        clauses["createdAt"] = {
            "$gte": filters.date_range.start.timestamp(),
            "$lte": filters.date_range.end.timestamp(),
        }
    return clauses


def _to_hit(match: IndexMatch) -> RawHit | None:
    document_id = match.metadata.get("documentId")
    if not document_id:
        logger.warning("Primary match %s has no documentId metadata, skipped", match.id)
        return None
    return RawHit(
        chunk_id=match.id,
        document_id=str(document_id),
        chunk_index=int(match.metadata.get("chunkIndex", 0)),
        score=match.score,
        metadata=match.metadata,
    )


class PrimaryVectorStore:
    """Searches each organization's namespace in the managed index."""

    name = BACKEND_NAME

    def __init__(self, index: VectorIndex, resolver: NamespaceResolver, documents: DocumentStore):
        """Initialize with the index client, namespace resolver and document store."""
        self.index = index
        self.resolver = resolver
        self.documents = documents

    async def query(
        self,
        namespace: str,
        vector: list[float],
        top_k: int,
        metadata_filter: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> list[IndexMatch]:
        """Raw nearest-neighbor matches from one namespace."""
        return await self.index.query(namespace, vector, top_k, metadata_filter, timeout=timeout)

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

        Invalid requests (unknown organization, bad namespace) propagate as-is;
        anything else unexpected is reported as a PrimaryStoreError.
        """
        try:
            info = await self.resolver.resolve(filters.organization_id)
            matches = await self.query(
                info.namespace, vector, top_k, build_metadata_filter(filters), timeout=timeout
            )
        except DocSearchError:
            raise
        except Exception as exc:
            raise PrimaryStoreError(f"Primary search failed: {exc}") from exc

        hits = [hit for m in matches if m.score >= min_score and (hit := _to_hit(m))]
        logger.debug(
            "Primary namespace %s returned %d matches, %d above %.2f",
            info.namespace,
            len(matches),
            len(hits),
            min_score,
        )
        results = await build_results(query, hits, self.documents, backend=BACKEND_NAME)
        return results[:top_k]

    async def ping(self) -> None:
        """Raise if the index cannot be reached."""
        await self.index.describe_stats()

    async def index_document(self, document: Document, embeddings: list[list[float]]) -> int:
        """Upsert one vector per chunk into the document's organization namespace."""
        if len(embeddings) != len(document.chunks):
            raise ValueError("Need exactly one embedding per chunk")
        info = await self.resolver.resolve(document.organization_id)
        vectors = [
            IndexVector(
                id=chunk_vector_id(document.id, chunk.chunk_index),
                values=embedding,
                metadata=chunk_metadata(document, chunk),
            )
            for chunk, embedding in zip(document.chunks, embeddings, strict=True)
        ]
        return await self.index.upsert(info.namespace, vectors)

    async def delete_document(self, document_id: str, organization_id: str) -> int:
        """Delete every vector of one document from its organization namespace."""
        info = await self.resolver.resolve(organization_id)
        ids: list[str] = []
        token: str | None = None
        while True:
            page, token = await self.index.list_ids(info.namespace, pagination_token=token)
            ids.extend(i for i in page if i.startswith(f"{document_id}_chunk_"))
            if not token:
                break
        await self.index.delete(info.namespace, ids)
        logger.info("Deleted %d primary vectors for document %s", len(ids), document_id)
        return len(ids)
