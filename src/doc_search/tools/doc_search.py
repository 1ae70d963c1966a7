"""doc_search and doc_health MCP tools: semantic document search."""

import logging
from datetime import UTC, datetime
from typing import Annotated

from fastmcp import FastMCP
from fastmcp.server.context import Context
from pydantic import Field, ValidationError

from doc_search.errors import InvalidSearchRequest, SearchUnavailable
from doc_search.models.search import DateRange, SearchFilters, SearchOptions
from doc_search.search.orchestrator import SearchOrchestrator
from doc_search.tools.formatters import format_health, format_result_list

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_FAR_FUTURE = datetime(9999, 12, 31, tzinfo=UTC)


def build_date_range(
    created_after: datetime | None, created_before: datetime | None
) -> DateRange | None:
    """An inclusive range from optional bounds; None when both are open."""
    if created_after is None and created_before is None:
        return None
    return DateRange(start=created_after or _EPOCH, end=created_before or _FAR_FUTURE)


def register_doc_search(mcp: FastMCP) -> None:
    """Register the doc_search and doc_health tools with the MCP server."""

    @mcp.tool()
    async def doc_search(
        query: Annotated[str, Field(description="Natural-language search query")],
        organization_id: Annotated[
            str, Field(description="Organization whose documents to search")
        ],
        document_id: Annotated[
            str | None, Field(description="Restrict to a single document")
        ] = None,
        document_ids: Annotated[
            list[str] | None, Field(description="Restrict to these documents")
        ] = None,
        document_types: Annotated[
            list[str] | None,
            Field(description="Document types, e.g. SOLICITATION, PAST_PERFORMANCE"),
        ] = None,
        naics_codes: Annotated[
            list[str] | None, Field(description="Match documents with any of these NAICS codes")
        ] = None,
        tags: Annotated[
            list[str] | None, Field(description="Match documents with any of these tags")
        ] = None,
        created_after: Annotated[
            datetime | None, Field(description="Only documents created at or after this time")
        ] = None,
        created_before: Annotated[
            datetime | None, Field(description="Only documents created at or before this time")
        ] = None,
        top_k: Annotated[int, Field(description="Maximum results (1-100)", ge=1, le=100)] = 10,
        min_score: Annotated[
            float, Field(description="Minimum similarity score (0-1)", ge=0.0, le=1.0)
        ] = 0.1,
        rerank: Annotated[
            bool, Field(description="Boost results by query keyword density")
        ] = False,
        hybrid: Annotated[
            bool, Field(description="Fuse vector similarity with keyword relevance")
        ] = False,
        keywords: Annotated[
            list[str] | None,
            Field(description="Keywords for hybrid scoring (defaults to words from the query)"),
        ] = None,
        vector_weight: Annotated[
            float, Field(description="Hybrid weight of vector similarity", ge=0.0, le=1.0)
        ] = 0.7,
        keyword_weight: Annotated[
            float, Field(description="Hybrid weight of keyword relevance", ge=0.0, le=1.0)
        ] = 0.3,
        ctx: Context | None = None,
    ) -> str:
        """Search an organization's documents by meaning.

        Finds the document chunks most similar to the query within one
        organization. Filters narrow the search to documents, types, NAICS
        codes, tags or a creation window. ``rerank`` favors chunks that repeat
        the query's words; ``hybrid`` blends in keyword relevance and reports
        both scores.
        """
        if ctx is None:
            raise RuntimeError("Context not injected")
        orchestrator: SearchOrchestrator = ctx.lifespan_context["orchestrator"]

        try:
            filters = SearchFilters(
                organization_id=organization_id,
                document_id=document_id,
                document_ids=document_ids,
                document_types=document_types,
                naics_codes=naics_codes,
                tags=tags,
                date_range=build_date_range(created_after, created_before),
            )
            options = SearchOptions(
                top_k=top_k,
                min_score=min_score,
                rerank=rerank,
                hybrid=hybrid,
                keywords=keywords,
                vector_weight=vector_weight,
                keyword_weight=keyword_weight,
            )
        except ValidationError as e:
            return f"Error: {e}"

        try:
            results = await orchestrator.search(query, filters, options)
        except InvalidSearchRequest as e:
            return f"Error: {e}"
        except SearchUnavailable as e:
            hint = " Try again shortly." if e.retryable else ""
            return f"Search unavailable: {e}.{hint}"

        note = None
        if results and all(r.metadata.get("searchBackend") == "secondary" for r in results):
            note = "Served by the fallback vector store."
        return format_result_list(results, note)

    @mcp.tool()
    async def doc_health(ctx: Context | None = None) -> str:
        """Report whether the primary and fallback vector stores are reachable."""
        if ctx is None:
            raise RuntimeError("Context not injected")
        orchestrator: SearchOrchestrator = ctx.lifespan_context["orchestrator"]
        return format_health(await orchestrator.health_check())
