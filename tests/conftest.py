"""Shared test fixtures."""

import asyncio
import hashlib
import math
import re
from datetime import UTC, datetime

import pytest
import pytest_asyncio

from doc_search.db.connection import create_connection
from doc_search.errors import PrimaryStoreError
from doc_search.models.document import Document, DocumentChunk, Organization
from doc_search.models.index import IndexDescription, IndexMatch
from doc_search.search.cache import ResultCache
from doc_search.search.namespaces import NamespaceResolver
from doc_search.search.orchestrator import SearchOrchestrator
from doc_search.search.primary import PrimaryVectorStore
from doc_search.search.secondary import SecondaryVectorStore
from doc_search.store.documents import SqlDocumentStore

DIM = 256
ORG_ID = "org-1"
OTHER_ORG_ID = "org-2"

_WORD_RE = re.compile(r"\w+")


def _bucket(word: str, dim: int) -> int:
    return int.from_bytes(hashlib.md5(word.encode()).digest()[:4], "big") % dim


def bag_of_words(text: str, dim: int = DIM) -> list[float]:
    """Deterministic unit vector: one bucket per word, counts normalized.

    Identical texts get identical vectors and texts sharing words land close
    together, which is all the ranking tests need.
    """
    vec = [0.0] * dim
    for word in _WORD_RE.findall(text.lower()):
        vec[_bucket(word, dim)] += 1.0
    norm = math.sqrt(sum(v * v for v in vec))
    if norm == 0:
        vec[0] = 1.0
        return vec
    return [v / norm for v in vec]


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


def _matches_filter(metadata: dict, metadata_filter: dict) -> bool:
    for key, condition in metadata_filter.items():
        value = metadata.get(key)
        for op, operand in condition.items():
            if op == "$eq":
                ok = value == operand
            elif op == "$in":
                if isinstance(value, list):
                    ok = any(v in operand for v in value)
                else:
                    ok = value in operand
            elif op == "$gte":
                ok = value is not None and value >= operand
            elif op == "$lte":
                ok = value is not None and value <= operand
            else:
                raise ValueError(f"Unsupported filter operator {op}")
            if not ok:
                return False
    return True


class FakeEmbedder:
    """Bag-of-words embedder with a call counter and injectable failures."""

    def __init__(self, dim: int = DIM):
        self.dim = dim
        self.calls = 0
        self.error: Exception | None = None
        self.delay = 0.0
        self.closed = False

    async def embed(self, text: str, *, timeout: float | None = None) -> list[float]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return bag_of_words(text, self.dim)

    async def close(self) -> None:
        self.closed = True


class FakeVectorIndex:
    """In-memory stand-in for the Pinecone index, namespaces included."""

    name = "fake-index"

    def __init__(self):
        self.namespaces: dict[str, dict[str, tuple[list[float], dict]]] = {}
        self.query_calls = 0
        self.error: Exception | None = None
        self.delay = 0.0
        self.fullness = 0.0
        self.failing_fetch_namespaces: set[str] = set()
        self.fetch_failures = 0

    async def query(self, namespace, vector, top_k, metadata_filter=None, *, timeout=None):
        self.query_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        matches = [
            IndexMatch(id=vector_id, score=_cosine(vector, values), metadata=dict(metadata))
            for vector_id, (values, metadata) in self.namespaces.get(namespace, {}).items()
            if _matches_filter(metadata, metadata_filter or {})
        ]
        matches.sort(key=lambda m: (-m.score, m.id))
        return matches[:top_k]

    async def upsert(self, namespace, vectors):
        store = self.namespaces.setdefault(namespace, {})
        for vector in vectors:
            store[vector.id] = (list(vector.values), dict(vector.metadata))
        return len(vectors)

    async def delete(self, namespace, ids):
        store = self.namespaces.get(namespace, {})
        for vector_id in ids:
            store.pop(vector_id, None)

    async def list_ids(self, namespace, *, limit=100, pagination_token=None):
        ids = sorted(self.namespaces.get(namespace, {}))
        if pagination_token:
            ids = [i for i in ids if i > pagination_token]
        page = ids[:limit]
        return page, (page[-1] if len(ids) > limit else None)

    async def fetch(self, namespace, ids):
        if self.fetch_failures > 0:
            self.fetch_failures -= 1
            raise PrimaryStoreError("fetch failed")
        if namespace in self.failing_fetch_namespaces:
            raise PrimaryStoreError(f"fetch failed for {namespace}")
        store = self.namespaces.get(namespace, {})
        return {i: dict(store[i][1]) for i in ids if i in store}

    async def describe_stats(self):
        if self.error is not None:
            raise self.error
        counts = {name: len(vectors) for name, vectors in self.namespaces.items()}
        return IndexDescription(
            total_vector_count=sum(counts.values()),
            dimension=DIM,
            index_fullness=self.fullness,
            namespaces=counts,
        )

    async def ensure_namespace(self, namespace):
        if self.error is not None:
            raise self.error
        return namespace not in self.namespaces

    async def close(self):
        pass


def _make_document(
    doc_id: str,
    chunks: list[str],
    *,
    organization_id: str = ORG_ID,
    name: str | None = None,
    document_type: str | None = "SOLICITATION",
    naics_codes: list[str] | None = None,
    tags: list[str] | None = None,
    created_at: datetime | None = None,
) -> Document:
    return Document(
        id=doc_id,
        organization_id=organization_id,
        name=name or f"Document {doc_id}",
        document_type=document_type,
        naics_codes=naics_codes or [],
        tags=tags or [],
        chunks=[DocumentChunk(chunk_index=i, content=text) for i, text in enumerate(chunks)],
        created_at=created_at or datetime(2024, 6, 1, tzinfo=UTC),
    )


@pytest_asyncio.fixture
async def db():
    """In-memory database with full schema and sqlite-vec."""
    conn = await create_connection(":memory:")
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def documents(db):
    """Document store with two organizations."""
    store = SqlDocumentStore(db)
    await store.add_organization(Organization(id=ORG_ID, name="Acme Federal", slug="acme"))
    await store.add_organization(
        Organization(id=OTHER_ORG_ID, name="Globex Systems", slug="globex")
    )
    return store


@pytest.fixture
def embedder():
    """Deterministic fake embedder."""
    return FakeEmbedder()


@pytest.fixture
def fake_index():
    """In-memory primary index."""
    return FakeVectorIndex()


@pytest.fixture
def resolver(documents, fake_index):
    """Namespace resolver over the fake index."""
    return NamespaceResolver(documents, fake_index)


@pytest.fixture
def primary(fake_index, resolver, documents):
    """Primary vector store over the fake index."""
    return PrimaryVectorStore(fake_index, resolver, documents)


@pytest.fixture
def secondary(db, documents):
    """Secondary vector store over the in-memory database."""
    return SecondaryVectorStore(db, documents)


@pytest.fixture
def cache():
    """Result cache with default limits."""
    return ResultCache(ttl=600, stale_grace=600, max_entries=1000)


@pytest.fixture
def orchestrator(embedder, primary, secondary, cache):
    """Orchestrator with fallback enabled and short budgets."""
    return SearchOrchestrator(
        embedder,
        primary,
        secondary,
        cache=cache,
        fallback_enabled=True,
        document_timeout=2.0,
        search_timeout=2.0,
        primary_query_timeout=0.5,
    )


@pytest.fixture
def make_document():
    """Factory for documents with sensible defaults."""
    return _make_document


@pytest.fixture
def seed(documents, primary, secondary):
    """Store documents and index their chunks in both vector stores."""

    async def _seed(*docs: Document, stores=None) -> None:
        targets = (primary, secondary) if stores is None else stores
        for doc in docs:
            await documents.add_document(doc)
            embeddings = [bag_of_words(chunk.content) for chunk in doc.chunks]
            for store in targets:
                await store.index_document(doc, embeddings)

    return _seed
