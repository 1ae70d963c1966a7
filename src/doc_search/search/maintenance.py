"""Out-of-band maintenance of both vector stores: stats, orphan cleanup, optimization.

Both backends are handled concurrently. A backend that fails shows up as
``None`` in the report and is logged; the other backend's result still counts.
"""

import asyncio
import logging
import time
from typing import Any, TypeVar

from doc_search.db import queries
from doc_search.db.backend import VectorDatabase
from doc_search.models.index import (
    CleanupReport,
    CleanupResult,
    HealthLevel,
    IndexStats,
    IndexStatsReport,
    OptimizationReport,
    OptimizationResult,
)
from doc_search.search.pinecone import MAX_LIST_LIMIT
from doc_search.search.primary import PrimaryVectorStore
from doc_search.store.documents import DocumentStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

FULLNESS_CRITICAL = 0.9
FULLNESS_WARNING = 0.7
ORPHAN_RATIO_CRITICAL = 0.2
ORPHAN_RATIO_WARNING = 0.1

SECONDARY_OPTIMIZE_OPERATION = "optimize_secondary"

PRIMARY_RECOMMENDATIONS = [
    "Pinecone optimizes serverless indexes automatically",
    "Watch index fullness and move to a larger pod or serverless tier before it passes 70%",
    "Keep metadata filters on indexed fields (documentId, documentType, naicsCodes, tags)",
]


def fullness_health(fullness: float) -> HealthLevel:
    """Health of the primary index by how full it is."""
    if fullness > FULLNESS_CRITICAL:
        return HealthLevel.CRITICAL
    if fullness > FULLNESS_WARNING:
        return HealthLevel.WARNING
    return HealthLevel.HEALTHY


def orphan_health(total_vectors: int, orphaned_vectors: int) -> HealthLevel:
    """Health of a store by the share of its vectors that are orphaned."""
    if total_vectors <= 0:
        return HealthLevel.HEALTHY
    ratio = orphaned_vectors / total_vectors
    if ratio > ORPHAN_RATIO_CRITICAL:
        return HealthLevel.CRITICAL
    if ratio > ORPHAN_RATIO_WARNING:
        return HealthLevel.WARNING
    return HealthLevel.HEALTHY


def combine_stats(primary: IndexStats | None, secondary: IndexStats | None) -> IndexStats:
    """Combined view: totals summed, owners maxed, health worst-of.

    An unreachable backend counts as a warning; both unreachable is critical.
    """
    available = [s for s in (primary, secondary) if s is not None]
    if not available:
        return IndexStats(health=HealthLevel.CRITICAL)
    levels = [s.health for s in available]
    if len(available) < 2:
        levels.append(HealthLevel.WARNING)
    return IndexStats(
        total_vectors=sum(s.total_vectors for s in available),
        organizations=max(s.organizations for s in available),
        documents=max(s.documents for s in available),
        orphaned_vectors=sum(s.orphaned_vectors for s in available),
        health=HealthLevel.worst(levels),
    )


def _sum_cleanup(results: list[CleanupResult | None]) -> CleanupResult:
    done = [r for r in results if r is not None]
    return CleanupResult(
        orphaned_vectors_removed=sum(r.orphaned_vectors_removed for r in done),
        documents_processed=max((r.documents_processed for r in done), default=0),
        vectors_scanned=sum(r.vectors_scanned for r in done),
        failures=sum(r.failures for r in done),
        time_elapsed=max((r.time_elapsed for r in done), default=0.0),
    )


def _sum_optimization(results: list[OptimizationResult | None]) -> OptimizationResult:
    done = [r for r in results if r is not None]
    return OptimizationResult(
        indexes_optimized=sum(r.indexes_optimized for r in done),
        time_elapsed=max((r.time_elapsed for r in done), default=0.0),
        recommendations=[line for r in done for line in r.recommendations],
    )


def _unwrap(label: str, op: str, outcome: T | BaseException) -> T | None:
    """Pass a gathered result through; log an exception and return None instead."""
    if isinstance(outcome, BaseException):
        logger.warning("%s %s failed", label, op, exc_info=outcome)
        return None
    return outcome


class IndexMaintenanceService:
    """Statistics, orphan cleanup and optimization across both vector stores."""

    def __init__(
        self,
        db: VectorDatabase,
        documents: DocumentStore,
        primary: PrimaryVectorStore | None = None,
        *,
        page_size: int = MAX_LIST_LIMIT,
    ):
        """Initialize with the secondary database, the document store and the primary store."""
        self.db = db
        self.documents = documents
        self.primary = primary
        self.index = primary.index if primary is not None else None
        self.page_size = page_size

    # -- Stats --

    async def get_stats(self, *, deep: bool = False) -> IndexStatsReport:
        """Per-backend and combined statistics.

        ``deep`` also sweeps the primary index (without deleting) to count its
        orphans, which lists every vector and can be slow.
        """
        outcomes = await asyncio.gather(
            self._primary_stats(deep=deep), self._secondary_stats(), return_exceptions=True
        )
        primary = _unwrap("primary", "stats", outcomes[0])
        secondary = _unwrap("secondary", "stats", outcomes[1])
        return IndexStatsReport(
            primary=primary, secondary=secondary, combined=combine_stats(primary, secondary)
        )

    async def _primary_stats(self, *, deep: bool) -> IndexStats | None:
        if self.index is None:
            return None
        description = await self.index.describe_stats()
        documents = await self.documents.count_documents()
        orphaned = 0
        if deep:
            sweep = await self._sweep_primary(dry_run=True)
            orphaned = sweep.orphaned_vectors_removed
        health = HealthLevel.worst(
            [
                fullness_health(description.index_fullness),
                orphan_health(description.total_vector_count, orphaned),
            ]
        )
        return IndexStats(
            total_vectors=description.total_vector_count,
            organizations=sum(1 for count in description.namespaces.values() if count > 0),
            documents=documents,
            orphaned_vectors=orphaned,
            health=health,
        )

    async def _secondary_stats(self) -> IndexStats:
        total = await queries.count_vectors(self.db)
        organizations, documents = await queries.count_vector_owners(self.db)
        orphaned = await queries.count_orphaned_vectors(self.db)
        return IndexStats(
            total_vectors=total,
            organizations=organizations,
            documents=documents,
            orphaned_vectors=orphaned,
            storage_size=await self.db.vector_table_size(),
            last_optimized=await queries.last_maintenance(self.db, SECONDARY_OPTIMIZE_OPERATION),
            health=orphan_health(total, orphaned),
        )

    # -- Cleanup --

    async def cleanup_orphans(self, *, dry_run: bool = False) -> CleanupReport:
        """Remove vectors whose document no longer exists, in both stores."""
        outcomes = await asyncio.gather(
            self._cleanup_primary(dry_run=dry_run),
            self._cleanup_secondary(dry_run=dry_run),
            return_exceptions=True,
        )
        primary = _unwrap("primary", "cleanup", outcomes[0])
        secondary = _unwrap("secondary", "cleanup", outcomes[1])
        combined = _sum_cleanup([primary, secondary])
        logger.info(
            "Orphan cleanup%s removed %d vectors",
            " (dry run)" if dry_run else "",
            combined.orphaned_vectors_removed,
        )
        return CleanupReport(primary=primary, secondary=secondary, combined=combined)

    async def _cleanup_primary(self, *, dry_run: bool) -> CleanupResult | None:
        if self.index is None:
            return None
        return await self._sweep_primary(dry_run=dry_run)

    async def _cleanup_secondary(self, *, dry_run: bool) -> CleanupResult:
        started = time.perf_counter()
        scanned = await queries.count_vectors(self.db)
        if dry_run:
            removed = await queries.count_orphaned_vectors(self.db)
        else:
            removed = await queries.delete_orphaned_vectors(self.db)
        return CleanupResult(
            orphaned_vectors_removed=removed,
            documents_processed=await self.documents.count_documents(),
            vectors_scanned=scanned,
            time_elapsed=time.perf_counter() - started,
        )

    async def _sweep_primary(self, *, dry_run: bool) -> CleanupResult:
        """Page through every namespace and delete vectors of missing documents.

        A page whose fetch or delete fails is logged and counted, and the
        sweep continues with the next page. A failed listing leaves no token
        to continue from, so the sweep moves on to the next namespace.
        """
        assert self.index is not None
        started = time.perf_counter()
        live = await self.documents.list_document_ids()
        description = await self.index.describe_stats()

        removed = scanned = failures = 0
        for namespace in sorted(description.namespaces):
            token: str | None = None
            while True:
                try:
                    ids, token = await self.index.list_ids(
                        namespace, limit=self.page_size, pagination_token=token
                    )
                except Exception:
                    failures += 1
                    logger.warning("Listing namespace %s failed", namespace, exc_info=True)
                    break
                scanned += len(ids)
                try:
                    orphans = await self._find_orphans(namespace, ids, live)
                    if orphans and not dry_run:
                        await self.index.delete(namespace, orphans)
                    removed += len(orphans)
                except Exception:
                    failures += 1
                    logger.warning("Sweep page of namespace %s failed", namespace, exc_info=True)
                if not token:
                    break

        return CleanupResult(
            orphaned_vectors_removed=removed,
            documents_processed=len(live),
            vectors_scanned=scanned,
            failures=failures,
            time_elapsed=time.perf_counter() - started,
        )

    async def _find_orphans(self, namespace: str, ids: list[str], live: set[str]) -> list[str]:
        if not ids:
            return []
        assert self.index is not None
        metadata: dict[str, dict[str, Any]] = await self.index.fetch(namespace, ids)
        return [
            vector_id
            for vector_id, meta in metadata.items()
            if meta.get("documentId") not in live
        ]

    # -- Optimize --

    async def optimize(self) -> OptimizationReport:
        """Rebuild the secondary similarity index; advise on the managed primary."""
        outcomes = await asyncio.gather(
            self._optimize_primary(), self._optimize_secondary(), return_exceptions=True
        )
        primary = _unwrap("primary", "optimize", outcomes[0])
        secondary = _unwrap("secondary", "optimize", outcomes[1])
        return OptimizationReport(
            primary=primary,
            secondary=secondary,
            combined=_sum_optimization([primary, secondary]),
        )

    async def _optimize_primary(self) -> OptimizationResult | None:
        if self.index is None:
            return None
        started = time.perf_counter()
        recommendations = list(PRIMARY_RECOMMENDATIONS)
        description = await self.index.describe_stats()
        level = fullness_health(description.index_fullness)
        if level is not HealthLevel.HEALTHY:
            recommendations.append(
                f"Index is {description.index_fullness:.0%} full ({level}); plan capacity now"
            )
        return OptimizationResult(
            indexes_optimized=1,
            time_elapsed=time.perf_counter() - started,
            recommendations=recommendations,
        )

    async def _optimize_secondary(self) -> OptimizationResult:
        started = time.perf_counter()
        try:
            recommendations = await self.db.optimize_vectors()
        except Exception as exc:
            logger.error("Secondary index optimization failed: %s", exc)
            return OptimizationResult(
                indexes_optimized=0,
                time_elapsed=time.perf_counter() - started,
                recommendations=[f"Optimization failed: {exc}"],
            )
        await queries.record_maintenance(self.db, SECONDARY_OPTIMIZE_OPERATION)
        return OptimizationResult(
            indexes_optimized=1,
            time_elapsed=time.perf_counter() - started,
            recommendations=recommendations,
        )

    # -- Per-document --

    async def delete_document_vectors(
        self, document_id: str, organization_id: str
    ) -> dict[str, int | None]:
        """Remove one document's vectors from both stores.

        Returns vectors removed per store; None when that store failed or is
        not configured.
        """
        outcomes = await asyncio.gather(
            self._delete_primary(document_id, organization_id),
            self.db.vector_delete_document(document_id, organization_id),
            return_exceptions=True,
        )
        return {
            "primary": _unwrap("primary", "delete", outcomes[0]),
            "secondary": _unwrap("secondary", "delete", outcomes[1]),
        }

    async def _delete_primary(self, document_id: str, organization_id: str) -> int | None:
        if self.primary is None:
            return None
        return await self.primary.delete_document(document_id, organization_id)
