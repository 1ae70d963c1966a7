"""Tests for the doc_maintain MCP tool."""

import pytest

from doc_search.db import queries
from doc_search.models.search import SearchFilters, SearchOptions

pytestmark = pytest.mark.usefixtures("indexed")

ORG = SearchFilters(organization_id="org-1")


async def _maintain(tools, ctx, action, **kwargs):
    return await tools["doc_maintain"](action=action, ctx=ctx, **kwargs)


@pytest.mark.asyncio
async def test_unknown_action(tools, ctx):
    output = await _maintain(tools, ctx, "reindex")
    assert output.startswith("Unknown action 'reindex'. Use: ")
    assert "cleanup_orphans" in output


@pytest.mark.asyncio
async def test_requires_context(tools):
    with pytest.raises(RuntimeError, match="Context not injected"):
        await tools["doc_maintain"](action="stats")


@pytest.mark.asyncio
async def test_stats(tools, ctx):
    output = await _maintain(tools, ctx, "stats")
    assert output.startswith("Vector Index Statistics")
    assert "Primary: healthy" in output
    assert "  vectors 3, orphaned 0" in output


@pytest.mark.asyncio
async def test_cleanup_orphans_clears_cache(tools, ctx, documents, orchestrator, cache):
    await orchestrator.search("janitorial services", ORG)
    assert cache.stats()["entries"] == 1
    await documents.remove_document("doc-janitor")

    preview = await _maintain(tools, ctx, "cleanup_orphans", dry_run=True)
    assert preview.startswith("Orphan cleanup (dry run")
    assert cache.stats()["entries"] == 1

    output = await _maintain(tools, ctx, "cleanup_orphans")
    assert "Total: removed 2 of 6 scanned" in output
    assert cache.stats()["entries"] == 0


@pytest.mark.asyncio
async def test_optimize(tools, ctx, db):
    output = await _maintain(tools, ctx, "optimize")
    assert output.startswith("Optimized 2 index(es)")
    assert await queries.last_maintenance(db, "optimize_secondary") is not None


@pytest.mark.asyncio
async def test_delete_document(tools, ctx, db, cache, orchestrator):
    missing = await _maintain(tools, ctx, "delete_document", document_id="doc-fisma")
    assert missing == (
        "Error: document_id and organization_id are required for delete_document action."
    )

    await orchestrator.search("fisma audit", ORG)
    output = await _maintain(
        tools, ctx, "delete_document", document_id="doc-fisma", organization_id="org-1"
    )
    assert output == "Deleted vectors for doc-fisma: primary 2 removed, secondary 2 removed"
    assert await queries.count_vectors(db) == 1
    assert cache.stats()["entries"] == 0


@pytest.mark.asyncio
async def test_fallback_toggles(tools, ctx, orchestrator):
    output = await _maintain(tools, ctx, "fallback_off")
    assert orchestrator.fallback_enabled is False
    assert "Fallback service: none" in output

    output = await _maintain(tools, ctx, "fallback_on")
    assert orchestrator.fallback_enabled is True
    assert "Fallback service: sqlite-vec" in output


@pytest.mark.asyncio
async def test_force_secondary_toggles(tools, ctx, orchestrator):
    output = await _maintain(tools, ctx, "force_secondary_on")
    assert orchestrator.force_secondary is True
    assert "Forced secondary: True" in output

    results = await orchestrator.search("fisma audit", ORG, SearchOptions(top_k=5))
    assert {r.metadata["searchBackend"] for r in results} == {"secondary"}

    await _maintain(tools, ctx, "force_secondary_off")
    assert orchestrator.force_secondary is False


@pytest.mark.asyncio
async def test_service_info(tools, ctx):
    output = await _maintain(tools, ctx, "service_info")
    assert "Primary service: pinecone" in output


@pytest.mark.asyncio
async def test_cache_clear(tools, ctx, orchestrator, cache):
    await orchestrator.search("fisma audit", ORG)
    await orchestrator.search("fisma audit", SearchFilters(organization_id="org-2"))

    output = await _maintain(tools, ctx, "cache_clear", organization_id="org-2")
    # org-2 has no documents, so nothing was cached for it
    assert output == "Cleared 0 cached result set(s) for org-2."
    output = await _maintain(tools, ctx, "cache_clear")
    assert output == "Cleared 1 cached result set(s)."
    assert cache.stats()["entries"] == 0
