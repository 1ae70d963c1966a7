"""FastMCP server: wires stores, cache and orchestrator into the tool context."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastmcp import FastMCP

from doc_search.config import get_db_path, get_embedding_dim, get_log_level, is_manager_mode
from doc_search.db.connection import create_connection
from doc_search.search.cache import ResultCache
from doc_search.search.embeddings import EmbeddingClient
from doc_search.search.maintenance import IndexMaintenanceService
from doc_search.search.namespaces import NamespaceResolver
from doc_search.search.orchestrator import SearchOrchestrator
from doc_search.search.pinecone import PineconeIndex
from doc_search.search.primary import PrimaryVectorStore
from doc_search.search.secondary import SecondaryVectorStore
from doc_search.store.documents import SqlDocumentStore
from doc_search.tools.doc_maintain import register_doc_maintain
from doc_search.tools.doc_search import register_doc_search


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[dict[str, Any]]:
    """Manage database, index and embedding client lifecycle."""
    # stdout carries the MCP stdio protocol, so logs go to stderr
    logging.basicConfig(
        level=getattr(logging, get_log_level()),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )
    logger = logging.getLogger(__name__)

    db_path = get_db_path()
    logger.info("Opening database (SQLite path %s unless DOCSEARCH_DATABASE_URL is set)", db_path)
    db = await create_connection(db_path, embedding_dim=get_embedding_dim())

    documents = SqlDocumentStore(db)
    index = PineconeIndex()
    if not index.configured:
        logger.warning("Pinecone not configured; primary searches will fail over")

    resolver = NamespaceResolver(documents, index)
    primary = PrimaryVectorStore(index, resolver, documents)
    secondary = SecondaryVectorStore(db, documents)
    cache = ResultCache()
    embedder = EmbeddingClient()

    orchestrator = SearchOrchestrator(embedder, primary, secondary, cache=cache)
    maintenance = IndexMaintenanceService(db, documents, primary)

    if orchestrator.fallback_enabled:
        logger.info("Fallback to %s enabled", secondary.service_name)
    else:
        logger.info("Fallback disabled; primary failures surface to callers")

    try:
        yield {
            "db": db,
            "documents": documents,
            "cache": cache,
            "resolver": resolver,
            "orchestrator": orchestrator,
            "maintenance": maintenance,
        }
    finally:
        await orchestrator.close()
        await index.close()
        await db.close()
        logger.info("Database connection closed")


_INSTRUCTIONS = """\
Semantic search over an organization's government-contracting documents \
(solicitations, contracts, amendments, past performance, capability statements).

- doc_search: Find the passages most relevant to a question within one \
organization. Filter by document, document type, NAICS code, tag or creation \
date. Use hybrid=True with keywords when exact terms (clause numbers, \
acronyms) matter as much as meaning.
- doc_health: Check whether the primary index and the fallback store are up.

Results show the document, chunk number, score and the sentences that \
matched. A note appears when the fallback store answered.
"""


def create_server() -> FastMCP:
    """Build the doc-search server; doc_maintain is only exposed in manager mode."""
    mcp = FastMCP(
        "doc-search",
        instructions=_INSTRUCTIONS,
        lifespan=lifespan,
    )

    register_doc_search(mcp)

    if is_manager_mode():
        register_doc_maintain(mcp)

    return mcp
