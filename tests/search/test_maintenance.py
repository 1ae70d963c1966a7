"""Tests for vector index maintenance: stats, orphan cleanup, optimize."""

import pytest

from doc_search.db import queries
from doc_search.errors import PrimaryStoreError
from doc_search.models.index import HealthLevel, IndexStats
from doc_search.search.maintenance import (
    PRIMARY_RECOMMENDATIONS,
    SECONDARY_OPTIMIZE_OPERATION,
    IndexMaintenanceService,
    combine_stats,
    fullness_health,
    orphan_health,
)

ACME_NS = "acme-federal_org-1"
GLOBEX_NS = "globex-systems_org-2"


@pytest.fixture
def service(db, documents, primary):
    return IndexMaintenanceService(db, documents, primary, page_size=2)


@pytest.fixture
def secondary_only(db, documents):
    return IndexMaintenanceService(db, documents)


async def _seed_corpus(seed, make_document):
    await seed(
        make_document("doc-1", ["cloud migration", "quarterly waves"]),
        make_document("doc-2", ["janitorial services"]),
        make_document("doc-3", ["fisma audit", "security controls", "monitoring"]),
        make_document("doc-9", ["cloud migration"], organization_id="org-2"),
    )


@pytest.mark.parametrize(
    ("fullness", "expected"),
    [
        (0.0, HealthLevel.HEALTHY),
        (0.7, HealthLevel.HEALTHY),
        (0.71, HealthLevel.WARNING),
        (0.9, HealthLevel.WARNING),
        (0.95, HealthLevel.CRITICAL),
    ],
)
def test_fullness_health(fullness, expected):
    assert fullness_health(fullness) is expected


@pytest.mark.parametrize(
    ("total", "orphaned", "expected"),
    [
        (0, 0, HealthLevel.HEALTHY),
        (100, 10, HealthLevel.HEALTHY),
        (100, 11, HealthLevel.WARNING),
        (100, 21, HealthLevel.CRITICAL),
    ],
)
def test_orphan_health(total, orphaned, expected):
    assert orphan_health(total, orphaned) is expected


def test_combine_stats_sums_and_maxes():
    primary = IndexStats(total_vectors=10, organizations=2, documents=4, orphaned_vectors=1)
    secondary = IndexStats(
        total_vectors=8,
        organizations=1,
        documents=5,
        orphaned_vectors=2,
        health=HealthLevel.WARNING,
    )
    combined = combine_stats(primary, secondary)
    assert combined.total_vectors == 18
    assert combined.organizations == 2
    assert combined.documents == 5
    assert combined.orphaned_vectors == 3
    assert combined.health is HealthLevel.WARNING


def test_combine_stats_with_missing_backends():
    stats = IndexStats(total_vectors=3)
    assert combine_stats(stats, None).health is HealthLevel.WARNING
    assert combine_stats(None, stats).total_vectors == 3
    assert combine_stats(None, None).health is HealthLevel.CRITICAL


@pytest.mark.asyncio
async def test_stats_for_both_backends(service, seed, make_document):
    await _seed_corpus(seed, make_document)
    report = await service.get_stats()

    assert report.primary.total_vectors == 7
    assert report.primary.organizations == 2
    assert report.primary.documents == 4
    assert report.primary.orphaned_vectors == 0
    assert report.secondary.total_vectors == 7
    assert report.secondary.documents == 4
    assert report.secondary.organizations == 2
    assert report.secondary.last_optimized is None
    assert report.combined.total_vectors == 14
    assert report.combined.health is HealthLevel.HEALTHY


@pytest.mark.asyncio
async def test_stats_flags_full_primary(service, fake_index, seed, make_document):
    await _seed_corpus(seed, make_document)
    fake_index.fullness = 0.95
    report = await service.get_stats()
    assert report.primary.health is HealthLevel.CRITICAL
    assert report.combined.health is HealthLevel.CRITICAL


@pytest.mark.asyncio
async def test_stats_count_orphans(service, documents, seed, make_document):
    await _seed_corpus(seed, make_document)
    await documents.remove_document("doc-3")

    shallow = await service.get_stats()
    assert shallow.secondary.orphaned_vectors == 3
    assert shallow.secondary.health is HealthLevel.CRITICAL
    # Counting primary orphans needs a sweep
    assert shallow.primary.orphaned_vectors == 0

    deep = await service.get_stats(deep=True)
    assert deep.primary.orphaned_vectors == 3
    assert deep.combined.orphaned_vectors == 6


@pytest.mark.asyncio
async def test_stats_survive_unavailable_primary(service, fake_index, seed, make_document):
    await _seed_corpus(seed, make_document)
    fake_index.error = PrimaryStoreError("index down")
    report = await service.get_stats()

    assert report.primary is None
    assert report.secondary.total_vectors == 7
    assert report.combined.health is HealthLevel.WARNING


@pytest.mark.asyncio
async def test_stats_without_primary(secondary_only):
    report = await secondary_only.get_stats()
    assert report.primary is None
    assert report.secondary.total_vectors == 0


@pytest.mark.asyncio
async def test_cleanup_removes_orphans_from_both_stores(
    service, documents, fake_index, db, seed, make_document
):
    await _seed_corpus(seed, make_document)
    await documents.remove_document("doc-3")

    report = await service.cleanup_orphans()

    assert report.primary.orphaned_vectors_removed == 3
    assert report.primary.vectors_scanned == 7
    assert report.primary.documents_processed == 3
    assert report.primary.failures == 0
    assert report.secondary.orphaned_vectors_removed == 3
    assert report.combined.orphaned_vectors_removed == 6
    assert not any(key.startswith("doc-3_") for key in fake_index.namespaces[ACME_NS])
    assert await queries.count_vectors(db) == 4


@pytest.mark.asyncio
async def test_cleanup_is_idempotent(service, documents, seed, make_document):
    await _seed_corpus(seed, make_document)
    await documents.remove_document("doc-1")

    first = await service.cleanup_orphans()
    second = await service.cleanup_orphans()

    assert first.combined.orphaned_vectors_removed == 4
    assert second.combined.orphaned_vectors_removed == 0


@pytest.mark.asyncio
async def test_cleanup_dry_run_deletes_nothing(
    service, documents, fake_index, db, seed, make_document
):
    await _seed_corpus(seed, make_document)
    await documents.remove_document("doc-3")

    report = await service.cleanup_orphans(dry_run=True)

    assert report.combined.orphaned_vectors_removed == 6
    assert len(fake_index.namespaces[ACME_NS]) == 6
    assert await queries.count_vectors(db) == 7


@pytest.mark.asyncio
async def test_cleanup_continues_past_failing_namespace(
    service, documents, fake_index, seed, make_document
):
    await _seed_corpus(seed, make_document)
    await documents.remove_document("doc-3")
    await documents.remove_document("doc-9")
    fake_index.failing_fetch_namespaces.add(ACME_NS)

    report = await service.cleanup_orphans()

    # One failure per page of the acme namespace
    assert report.primary.failures == 3
    assert report.primary.orphaned_vectors_removed == 1
    assert fake_index.namespaces[GLOBEX_NS] == {}
    assert len(fake_index.namespaces[ACME_NS]) == 6


@pytest.mark.asyncio
async def test_cleanup_continues_past_failing_page(
    service, documents, fake_index, seed, make_document
):
    await _seed_corpus(seed, make_document)
    for doc_id in ("doc-1", "doc-2", "doc-3"):
        await documents.remove_document(doc_id)
    fake_index.fetch_failures = 1

    report = await service.cleanup_orphans()

    assert report.primary.failures == 1
    assert report.primary.vectors_scanned == 7
    assert report.primary.orphaned_vectors_removed == 4
    assert sorted(fake_index.namespaces[ACME_NS]) == ["doc-1_chunk_0", "doc-1_chunk_1"]


@pytest.mark.asyncio
async def test_optimize(service, db):
    report = await service.optimize()

    assert report.primary.indexes_optimized == 1
    assert report.primary.recommendations == PRIMARY_RECOMMENDATIONS
    assert report.secondary.indexes_optimized == 1
    assert "Rebuilt indexes on document_vectors" in report.secondary.recommendations
    assert report.combined.indexes_optimized == 2
    assert await queries.last_maintenance(db, SECONDARY_OPTIMIZE_OPERATION) is not None

    stats = await service.get_stats()
    assert stats.secondary.last_optimized is not None


@pytest.mark.asyncio
async def test_optimize_warns_about_fullness(service, fake_index):
    fake_index.fullness = 0.8
    report = await service.optimize()
    assert report.primary.recommendations[-1].startswith("Index is 80% full (warning)")


@pytest.mark.asyncio
async def test_delete_document_vectors(service, fake_index, seed, make_document):
    await _seed_corpus(seed, make_document)

    removed = await service.delete_document_vectors("doc-3", "org-1")

    assert removed == {"primary": 3, "secondary": 3}
    assert len(fake_index.namespaces[ACME_NS]) == 3


@pytest.mark.asyncio
async def test_delete_document_vectors_without_primary(secondary_only, seed, make_document):
    await _seed_corpus(seed, make_document)
    removed = await secondary_only.delete_document_vectors("doc-1", "org-1")
    assert removed == {"primary": None, "secondary": 2}
