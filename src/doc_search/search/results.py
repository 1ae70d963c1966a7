"""Turning raw vector hits into SearchResults, shared by both store adapters."""

import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from doc_search.models.document import Document, DocumentChunk
from doc_search.models.search import SearchResult
from doc_search.store.documents import DocumentStore

logger = logging.getLogger(__name__)

MAX_HIGHLIGHTS = 3
CHUNK_PREVIEW_CHARS = 1000

_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")

# Metadata keys that are promoted to SearchResult fields rather than echoed back
_PROMOTED_KEYS = frozenset({"chunkText", "documentTitle", "documentId", "chunkIndex"})


@dataclass
class RawHit:
    """A similarity hit before chunk text resolution."""

    chunk_id: str
    document_id: str
    chunk_index: int
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


def clamp_score(value: float) -> float:
    """Clamp to [0, 1]."""
    return max(0.0, min(1.0, value))


def query_words(query: str) -> list[str]:
    """Lowercased whitespace-separated words of ``query``."""
    return query.lower().split()


def extract_highlights(query: str, text: str) -> list[str]:
    """Up to three sentences of ``text`` that mention any query word."""
    words = query_words(query)
    if not words:
        return []
    highlights = []
    for sentence in _SENTENCE_SPLIT_RE.split(text):
        trimmed = sentence.strip()
        if not trimmed:
            continue
        lowered = trimmed.lower()
        if any(word in lowered for word in words):
            highlights.append(trimmed)
            if len(highlights) == MAX_HIGHLIGHTS:
                break
    return highlights


def sort_results(results: list[SearchResult]) -> list[SearchResult]:
    """Deterministic order: score desc, then document ID, then chunk index."""
    return sorted(results, key=lambda r: (-r.score, r.document_id, r.chunk_index))


async def resolve_chunk_texts(
    documents: DocumentStore, hits: list[RawHit]
) -> dict[tuple[str, int], str]:
    """Full chunk text for each hit, fetched once per call.

    Returns an empty mapping when the store fails; callers fall back to the
    preview carried in vector metadata.
    """
    document_ids = sorted({hit.document_id for hit in hits})
    if not document_ids:
        return {}
    try:
        chunks_by_doc = await documents.get_document_chunks(document_ids)
    except Exception:
        logger.warning("Could not load chunk text, using metadata previews", exc_info=True)
        return {}
    return {
        (doc_id, chunk.chunk_index): chunk.content
        for doc_id, chunks in chunks_by_doc.items()
        for chunk in chunks
    }


async def build_results(
    query: str,
    hits: list[RawHit],
    documents: DocumentStore,
    *,
    backend: str,
) -> list[SearchResult]:
    """Resolve chunk text, attach highlights, and order the hits."""
    texts = await resolve_chunk_texts(documents, hits)
    results = []
    for hit in hits:
        chunk_text = texts.get((hit.document_id, hit.chunk_index))
        if chunk_text is None:
            chunk_text = str(hit.metadata.get("chunkText") or "")
        metadata = {k: v for k, v in hit.metadata.items() if k not in _PROMOTED_KEYS}
        metadata["searchBackend"] = backend
        results.append(
            SearchResult(
                document_id=hit.document_id,
                document_title=str(hit.metadata.get("documentTitle") or "Untitled"),
                chunk_id=hit.chunk_id,
                chunk_index=hit.chunk_index,
                chunk_text=chunk_text,
                score=clamp_score(hit.score),
                metadata=metadata,
                highlights=extract_highlights(query, chunk_text),
            )
        )
    return sort_results(results)


def chunk_vector_id(document_id: str, chunk_index: int) -> str:
    """Stable vector ID for one chunk of a document."""
    return f"{document_id}_chunk_{chunk_index}"


def chunk_metadata(document: Document, chunk: DocumentChunk) -> dict[str, Any]:
    """Metadata stored alongside a chunk's vector in either store."""
    created = document.created_at or datetime.now(UTC)
    metadata = {
        "documentId": document.id,
        "organizationId": document.organization_id,
        "chunkIndex": chunk.chunk_index,
        "chunkText": chunk.content[:CHUNK_PREVIEW_CHARS],
        "documentTitle": document.name,
        "documentType": document.document_type,
        "naicsCodes": list(document.naics_codes),
        "tags": list(document.tags),
        "createdAt": created.timestamp(),
    }
    # Pinecone rejects null metadata values
    return {k: v for k, v in metadata.items() if v is not None}
