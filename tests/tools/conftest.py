"""Fixtures for calling MCP tool functions directly."""

from types import SimpleNamespace

import pytest
import pytest_asyncio

from doc_search.search.maintenance import IndexMaintenanceService
from doc_search.tools.doc_maintain import register_doc_maintain
from doc_search.tools.doc_search import register_doc_search


class CapturingMCP:
    """Stands in for FastMCP and keeps the undecorated tool functions."""

    def __init__(self):
        self.tools = {}

    def tool(self, *args, **kwargs):
        def decorator(fn):
            self.tools[fn.__name__] = fn
            return fn

        return decorator


@pytest.fixture
def tools():
    mcp = CapturingMCP()
    register_doc_search(mcp)
    register_doc_maintain(mcp)
    return mcp.tools


@pytest.fixture
def maintenance(db, documents, primary):
    return IndexMaintenanceService(db, documents, primary)


@pytest.fixture
def ctx(orchestrator, maintenance, cache):
    """Request context carrying the same lifespan objects the server builds."""
    return SimpleNamespace(
        lifespan_context={
            "orchestrator": orchestrator,
            "maintenance": maintenance,
            "cache": cache,
        }
    )


@pytest_asyncio.fixture
async def indexed(seed, make_document):
    await seed(
        make_document(
            "doc-fisma",
            ["FISMA compliance audit for cloud systems.", "Continuous monitoring."],
            name="Security Assessment RFP",
            naics_codes=["541512"],
            tags=["security"],
        ),
        make_document(
            "doc-janitor",
            ["Janitorial services at office buildings."],
            name="Facilities RFP",
            document_type="CONTRACT",
        ),
    )
