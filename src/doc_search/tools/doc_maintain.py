"""doc_maintain MCP tool: vector index maintenance and fallback control."""

import logging
from typing import Annotated

from fastmcp import FastMCP
from fastmcp.server.context import Context
from pydantic import Field

from doc_search.search.cache import ResultCache
from doc_search.search.maintenance import IndexMaintenanceService
from doc_search.search.orchestrator import SearchOrchestrator
from doc_search.tools.formatters import (
    format_cleanup_report,
    format_optimization_report,
    format_service_info,
    format_stats_report,
)

logger = logging.getLogger(__name__)

_ACTIONS = {
    "stats",
    "cleanup_orphans",
    "optimize",
    "delete_document",
    "fallback_on",
    "fallback_off",
    "force_secondary_on",
    "force_secondary_off",
    "service_info",
    "cache_clear",
}


def register_doc_maintain(mcp: FastMCP) -> None:
    """Register the doc_maintain tool with the MCP server."""

    @mcp.tool()
    async def doc_maintain(
        action: Annotated[
            str,
            Field(
                description=(
                    "Maintenance action: stats, cleanup_orphans, optimize, delete_document, "
                    "fallback_on, fallback_off, force_secondary_on, force_secondary_off, "
                    "service_info, cache_clear"
                ),
            ),
        ],
        document_id: Annotated[
            str | None, Field(description="Required for delete_document")
        ] = None,
        organization_id: Annotated[
            str | None,
            Field(description="Required for delete_document; optional scope for cache_clear"),
        ] = None,
        deep: Annotated[
            bool, Field(description="For stats: sweep the primary index to count orphans")
        ] = False,
        dry_run: Annotated[
            bool, Field(description="For cleanup_orphans: count orphans without deleting")
        ] = False,
        ctx: Context | None = None,
    ) -> str:
        """Administrative operations for the vector indexes.

        Requires DOCSEARCH_MANAGER=TRUE environment variable.

        Actions:
        - stats: Vector counts, orphans and health per store (deep=True sweeps the primary)
        - cleanup_orphans: Delete vectors of documents that no longer exist (dry_run to preview)
        - optimize: Rebuild the fallback similarity index; advice for the primary
        - delete_document: Remove one document's vectors from both stores
        - fallback_on / fallback_off: Allow or forbid the fallback store
        - force_secondary_on / force_secondary_off: Route all searches to the fallback store
        - service_info: Which services answer searches
        - cache_clear: Drop cached results (all, or one organization's)
        """
        if ctx is None:
            raise RuntimeError("Context not injected")

        if action not in _ACTIONS:
            return f"Unknown action '{action}'. Use: {', '.join(sorted(_ACTIONS))}"

        lifespan = ctx.lifespan_context
        orchestrator: SearchOrchestrator = lifespan["orchestrator"]
        maintenance: IndexMaintenanceService = lifespan["maintenance"]
        cache: ResultCache = lifespan["cache"]

        if action == "stats":
            return format_stats_report(await maintenance.get_stats(deep=deep))
        elif action == "cleanup_orphans":
            report = await maintenance.cleanup_orphans(dry_run=dry_run)
            if not dry_run and report.combined.orphaned_vectors_removed:
                cache.clear()
            return format_cleanup_report(report, dry_run=dry_run)
        elif action == "optimize":
            return format_optimization_report(await maintenance.optimize())
        elif action == "delete_document":
            return await _action_delete_document(maintenance, cache, document_id, organization_id)
        elif action in ("fallback_on", "fallback_off"):
            orchestrator.set_fallback_enabled(action == "fallback_on")
            return format_service_info(orchestrator.get_service_info())
        elif action in ("force_secondary_on", "force_secondary_off"):
            orchestrator.force_fallback_mode(action == "force_secondary_on")
            return format_service_info(orchestrator.get_service_info())
        elif action == "service_info":
            return format_service_info(orchestrator.get_service_info())
        elif action == "cache_clear":
            removed = cache.invalidate(organization_id)
            scope = f" for {organization_id}" if organization_id else ""
            return f"Cleared {removed} cached result set(s){scope}."

        return "Action not implemented."


async def _action_delete_document(
    maintenance: IndexMaintenanceService,
    cache: ResultCache,
    document_id: str | None,
    organization_id: str | None,
) -> str:
    """Remove a document's vectors from both stores."""
    if not document_id or not organization_id:
        return "Error: document_id and organization_id are required for delete_document action."

    outcome = await maintenance.delete_document_vectors(document_id, organization_id)
    cache.invalidate(organization_id)

    def _describe(count: int | None) -> str:
        return "failed or not configured" if count is None else f"{count} removed"

    return (
        f"Deleted vectors for {document_id}: primary {_describe(outcome['primary'])},"
        f" secondary {_describe(outcome['secondary'])}"
    )
