"""Tests for sqlite-vec similarity queries on the SQLite backend."""

from datetime import UTC, datetime

import pytest

from doc_search.models.search import DateRange, SearchFilters


async def _put(db, doc_id, chunk_index, embedding, org_id="org-1", **metadata):
    await db.vector_upsert(
        f"{doc_id}_chunk_{chunk_index}",
        document_id=doc_id,
        chunk_index=chunk_index,
        organization_id=org_id,
        embedding=embedding,
        metadata={"documentId": doc_id, "chunkIndex": chunk_index, **metadata},
    )


@pytest.mark.asyncio
async def test_query_orders_by_similarity(db):
    await _put(db, "doc-a", 0, [1.0, 0.0, 0.0])
    await _put(db, "doc-b", 0, [0.6, 0.8, 0.0])
    await _put(db, "doc-c", 0, [0.0, 0.0, 1.0])

    rows = await db.vector_query(
        [1.0, 0.0, 0.0], SearchFilters(organization_id="org-1"), min_score=0.0, limit=10
    )
    assert [r.document_id for r in rows] == ["doc-a", "doc-b", "doc-c"]
    assert rows[0].similarity == pytest.approx(1.0, abs=1e-5)
    assert rows[1].similarity == pytest.approx(0.6, abs=1e-5)
    assert rows[0].metadata["documentId"] == "doc-a"


@pytest.mark.asyncio
async def test_query_applies_threshold_and_limit(db):
    await _put(db, "doc-a", 0, [1.0, 0.0])
    await _put(db, "doc-b", 0, [0.6, 0.8])
    await _put(db, "doc-c", 0, [0.0, 1.0])

    rows = await db.vector_query(
        [1.0, 0.0], SearchFilters(organization_id="org-1"), min_score=0.5, limit=10
    )
    assert [r.document_id for r in rows] == ["doc-a", "doc-b"]

    rows = await db.vector_query(
        [1.0, 0.0], SearchFilters(organization_id="org-1"), min_score=0.0, limit=1
    )
    assert [r.document_id for r in rows] == ["doc-a"]


@pytest.mark.asyncio
async def test_query_is_scoped_to_organization(db):
    await _put(db, "doc-a", 0, [1.0, 0.0])
    await _put(db, "doc-x", 0, [1.0, 0.0], org_id="org-2")

    rows = await db.vector_query(
        [1.0, 0.0], SearchFilters(organization_id="org-2"), min_score=0.0, limit=10
    )
    assert [r.document_id for r in rows] == ["doc-x"]


@pytest.mark.asyncio
async def test_ties_break_on_document_then_chunk(db):
    await _put(db, "doc-b", 1, [1.0, 0.0])
    await _put(db, "doc-b", 0, [1.0, 0.0])
    await _put(db, "doc-a", 3, [1.0, 0.0])

    rows = await db.vector_query(
        [1.0, 0.0], SearchFilters(organization_id="org-1"), min_score=0.0, limit=10
    )
    assert [(r.document_id, r.chunk_index) for r in rows] == [
        ("doc-a", 3),
        ("doc-b", 0),
        ("doc-b", 1),
    ]


@pytest.mark.asyncio
async def test_metadata_filters(db):
    await _put(
        db,
        "rfp",
        0,
        [1.0, 0.0],
        documentType="SOLICITATION",
        naicsCodes=["541512"],
        tags=["cloud", "fisma"],
        createdAt=datetime(2024, 5, 1, tzinfo=UTC).timestamp(),
    )
    await _put(
        db,
        "pp",
        0,
        [1.0, 0.0],
        documentType="PAST_PERFORMANCE",
        naicsCodes=["541511"],
        tags=["devops"],
        createdAt=datetime(2022, 5, 1, tzinfo=UTC).timestamp(),
    )

    async def ids(**kwargs):
        rows = await db.vector_query(
            [1.0, 0.0], SearchFilters(organization_id="org-1", **kwargs), min_score=0.0, limit=10
        )
        return [r.document_id for r in rows]

    assert await ids(document_types=["PAST_PERFORMANCE"]) == ["pp"]
    assert await ids(naics_codes=["541512", "999999"]) == ["rfp"]
    assert await ids(tags=["devops"]) == ["pp"]
    assert await ids(document_ids=["pp", "rfp"]) == ["pp", "rfp"]
    assert await ids(document_id="rfp", document_ids=["pp"]) == ["rfp"]
    window = DateRange(
        start=datetime(2024, 1, 1, tzinfo=UTC), end=datetime(2024, 12, 31, tzinfo=UTC)
    )
    assert await ids(date_range=window) == ["rfp"]


@pytest.mark.asyncio
async def test_upsert_replaces_existing_chunk(db):
    await _put(db, "doc-a", 0, [1.0, 0.0], version=1)
    await _put(db, "doc-a", 0, [0.0, 1.0], version=2)

    rows = await db.vector_query(
        [0.0, 1.0], SearchFilters(organization_id="org-1"), min_score=0.0, limit=10
    )
    assert len(rows) == 1
    assert rows[0].metadata["version"] == 2
    assert rows[0].similarity == pytest.approx(1.0, abs=1e-5)


@pytest.mark.asyncio
async def test_delete_document_vectors(db):
    await _put(db, "doc-a", 0, [1.0, 0.0])
    await _put(db, "doc-a", 1, [1.0, 0.0])
    await _put(db, "doc-b", 0, [1.0, 0.0])

    assert await db.vector_delete_document("doc-a", "org-1") == 2
    assert await db.vector_delete_document("doc-a", "org-1") == 0
    assert await db.vector_delete_document("doc-b", "org-2") == 0


@pytest.mark.asyncio
async def test_optimize_vectors(db):
    await _put(db, "doc-a", 0, [1.0, 0.0])
    messages = await db.optimize_vectors()
    assert any("indexes" in m for m in messages)
