"""Compact output formatters for MCP tool responses."""

from doc_search.models.index import (
    CleanupReport,
    CleanupResult,
    IndexStats,
    IndexStatsReport,
    OptimizationReport,
    ServiceHealth,
    ServiceInfo,
)
from doc_search.models.search import HybridSearchResult, SearchResult

_PREVIEW_CHARS = 240


def format_result_header(rank: int, result: SearchResult) -> str:
    """Format: 1. [doc-1 #3] Title (0.87)."""
    header = f"{rank}. [{result.document_id} #{result.chunk_index}] {result.document_title}"
    if isinstance(result, HybridSearchResult):
        return (
            f"{header} ({result.hybrid_score:.2f}:"
            f" vector {result.vector_score:.2f}, keyword {result.keyword_score:.2f})"
        )
    return f"{header} ({result.score:.2f})"


def format_result_meta(result: SearchResult) -> str:
    """Format: SOLICITATION | naics 541512 | #cloud #fisma | via secondary."""
    meta = result.metadata
    parts: list[str] = []
    if meta.get("documentType"):
        parts.append(str(meta["documentType"]))
    if meta.get("naicsCodes"):
        parts.append("naics " + " ".join(meta["naicsCodes"]))
    if meta.get("tags"):
        parts.append(" ".join(f"#{t}" for t in meta["tags"]))
    if meta.get("searchBackend"):
        parts.append(f"via {meta['searchBackend']}")
    return " | ".join(parts)


def format_result(rank: int, result: SearchResult) -> str:
    """Header + meta + highlights (or a text preview when none matched)."""
    lines = [format_result_header(rank, result)]
    meta = format_result_meta(result)
    if meta:
        lines.append(f"  {meta}")
    if isinstance(result, HybridSearchResult) and result.matched_keywords:
        lines.append(f"  keywords: {', '.join(result.matched_keywords)}")
    if result.highlights:
        lines.extend(f"  > {h}" for h in result.highlights)
    else:
        preview = result.chunk_text[:_PREVIEW_CHARS]
        if len(result.chunk_text) > _PREVIEW_CHARS:
            preview += "…"
        lines.append(f"  {preview}")
    return "\n".join(lines)


def format_result_list(results: list[SearchResult], note: str | None = None) -> str:
    """Count + note + results joined by blank lines."""
    if not results:
        return "No results found."
    lines = [f"{len(results)} result(s)"]
    if note:
        lines.append(f"Note: {note}")
    lines.append("")
    lines.append("\n\n".join(format_result(i, r) for i, r in enumerate(results, start=1)))
    return "\n".join(lines)


def _format_stats_block(label: str, stats: IndexStats | None) -> list[str]:
    if stats is None:
        return [f"{label}: unavailable"]
    lines = [
        f"{label}: {stats.health}",
        f"  vectors {stats.total_vectors}, orphaned {stats.orphaned_vectors}",
        f"  organizations {stats.organizations}, documents {stats.documents}",
    ]
    if stats.storage_size:
        lines.append(f"  storage {stats.storage_size}")
    if stats.last_optimized:
        lines.append(f"  last optimized {stats.last_optimized.isoformat(timespec='seconds')}")
    return lines


def format_stats_report(report: IndexStatsReport) -> str:
    """Per-backend and combined index statistics."""
    lines = ["Vector Index Statistics", ""]
    lines += _format_stats_block("Primary", report.primary)
    lines += _format_stats_block("Secondary", report.secondary)
    lines += _format_stats_block("Combined", report.combined)
    return "\n".join(lines)


def _format_cleanup(label: str, result: CleanupResult | None) -> str:
    if result is None:
        return f"{label}: unavailable"
    line = (
        f"{label}: removed {result.orphaned_vectors_removed} of {result.vectors_scanned} scanned"
        f" ({result.documents_processed} live documents, {result.time_elapsed:.2f}s)"
    )
    if result.failures:
        line += f", {result.failures} failed page(s)"
    return line


def format_cleanup_report(report: CleanupReport, *, dry_run: bool = False) -> str:
    """Per-backend and combined orphan cleanup results."""
    title = "Orphan cleanup (dry run, nothing deleted)" if dry_run else "Orphan cleanup"
    return "\n".join(
        [
            title,
            _format_cleanup("Primary", report.primary),
            _format_cleanup("Secondary", report.secondary),
            _format_cleanup("Total", report.combined),
        ]
    )


def format_optimization_report(report: OptimizationReport) -> str:
    """Optimization outcome with recommendations."""
    lines = [
        f"Optimized {report.combined.indexes_optimized} index(es)"
        f" in {report.combined.time_elapsed:.2f}s"
    ]
    for label, result in (("Primary", report.primary), ("Secondary", report.secondary)):
        if result is None:
            lines.append(f"{label}: unavailable")
            continue
        lines.append(f"{label}:")
        lines.extend(f"  - {r}" for r in result.recommendations)
    return "\n".join(lines)


def format_health(health: ServiceHealth) -> str:
    """Availability of both stores and the fallback flags."""

    def _status(available: bool, error: str | None) -> str:
        return "available" if available else f"unavailable ({error or 'unknown error'})"

    return "\n".join(
        [
            f"Primary: {_status(health.primary_available, health.primary_error)}",
            f"Secondary: {_status(health.secondary_available, health.secondary_error)}",
            f"Fallback: {'enabled' if health.fallback_enabled else 'disabled'}",
            f"Forced secondary: {'on' if health.force_secondary else 'off'}",
        ]
    )


def format_service_info(info: ServiceInfo) -> str:
    """Which services answer searches."""
    return "\n".join(
        [
            f"Primary service: {info.primary_service}",
            f"Fallback service: {info.fallback_service or 'none'}",
            f"Fallback enabled: {info.fallback_enabled}",
            f"Forced secondary: {info.force_secondary}",
        ]
    )
