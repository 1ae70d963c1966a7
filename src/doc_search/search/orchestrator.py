"""Search orchestration: cache, embedding, primary store, fallback, post-processing.

Each request walks CACHE_CHECK → EMBED → PRIMARY_QUERY → (SECONDARY_QUERY) →
POST_PROCESS under a single deadline. Document-scoped searches get a shorter
budget than open or multi-document ones; every step is capped by what is
left of it. When the fallback store could still answer, the primary query
only gets part of the remainder.
"""

import asyncio
import logging
import time
from enum import StrEnum

from doc_search.config import (
    get_document_search_timeout,
    get_primary_query_timeout,
    get_search_timeout,
    is_fallback_enabled,
)
from doc_search.errors import (
    EmbeddingError,
    InvalidSearchRequest,
    PrimaryStoreError,
    PrimaryStoreTimeout,
    SearchUnavailable,
    SecondaryStoreError,
)
from doc_search.models.index import ServiceHealth, ServiceInfo
from doc_search.models.search import (
    HybridSearchResult,
    SearchFilters,
    SearchOptions,
    SearchResult,
)
from doc_search.search.cache import ResultCache
from doc_search.search.embeddings import Embedder
from doc_search.search.hybrid import HybridScorer, extract_query_keywords
from doc_search.search.primary import VectorStoreAdapter
from doc_search.search.rerank import RERANK_CANDIDATE_FACTOR, rerank

logger = logging.getLogger(__name__)

SIMILAR_REQUIREMENT_TYPES = ["SOLICITATION", "CONTRACT", "AMENDMENT"]
SIMILAR_EXPERIENCE_TYPES = ["PAST_PERFORMANCE", "CAPABILITY_STATEMENT"]

# Share of the remaining budget the primary may use when a fallback could still answer
PRIMARY_BUDGET_SHARE = 0.6


class SearchState(StrEnum):
    """Steps of one search request."""

    CACHE_CHECK = "cache_check"
    EMBED = "embed"
    PRIMARY_QUERY = "primary_query"
    SECONDARY_QUERY = "secondary_query"
    POST_PROCESS = "post_process"


class SearchOrchestrator:
    """Runs searches against the primary store with transparent fallback.

    The fallback flags are plain instance attributes: one orchestrator per
    process owns them.
    """

    def __init__(
        self,
        embedder: Embedder,
        primary: VectorStoreAdapter,
        secondary: VectorStoreAdapter | None = None,
        *,
        cache: ResultCache | None = None,
        scorer: HybridScorer | None = None,
        fallback_enabled: bool | None = None,
        document_timeout: float | None = None,
        search_timeout: float | None = None,
        primary_query_timeout: float | None = None,
        primary_service: str = "pinecone",
        secondary_service: str | None = None,
    ):
        """Initialize; unset timeouts and flags are read from configuration."""
        self.embedder = embedder
        self.primary = primary
        self.secondary = secondary
        self.cache = cache if cache is not None else ResultCache()
        self.scorer = scorer or HybridScorer()
        self.fallback_enabled = (
            is_fallback_enabled() if fallback_enabled is None else fallback_enabled
        )
        self.force_secondary = False
        self.document_timeout = document_timeout or get_document_search_timeout()
        self.search_timeout = search_timeout or get_search_timeout()
        self.primary_query_timeout = primary_query_timeout or get_primary_query_timeout()
        self.primary_service = primary_service
        self.secondary_service = secondary_service or (
            getattr(secondary, "service_name", "pgvector") if secondary else None
        )

    def timeout_for(self, filters: SearchFilters) -> float:
        """Overall budget for a request with these filters."""
        return self.document_timeout if filters.is_document_scoped else self.search_timeout

    async def search(
        self,
        query: str,
        filters: SearchFilters,
        options: SearchOptions | None = None,
    ) -> list[SearchResult]:
        """Search for chunks similar to ``query``.

        Returns HybridSearchResults when ``options.hybrid`` is set. Raises
        InvalidSearchRequest for malformed requests and SearchUnavailable when
        no path produced results in time.
        """
        options = options or SearchOptions()
        if not query.strip():
            raise InvalidSearchRequest("Query must not be empty")

        budget = self.timeout_for(filters)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + budget
        started = time.perf_counter()

        self._enter(SearchState.CACHE_CHECK, filters)
        if self.cache.should_cache(query, filters, options):
            cached = self.cache.get(query, filters, options)
            if cached is not None:
                logger.debug("Cache hit: %d results", len(cached))
                return cached

        try:
            async with asyncio.timeout_at(deadline):
                results = await self._run(query, filters, options, deadline)
        except TimeoutError as exc:
            elapsed = time.perf_counter() - started
            logger.warning("Search timed out after %.2fs (budget %.1fs)", elapsed, budget)
            stale = self.cache.get_stale(query, filters, options)
            if stale is not None:
                return stale
            raise SearchUnavailable(
                f"Search timed out after {budget:.1f}s", errors=[exc], retryable=True
            ) from exc

        logger.info(
            "Search returned %d results in %.3fs", len(results), time.perf_counter() - started
        )
        return results

    async def _run(
        self,
        query: str,
        filters: SearchFilters,
        options: SearchOptions,
        deadline: float,
    ) -> list[SearchResult]:
        loop = asyncio.get_running_loop()
        fetch_k = options.top_k * RERANK_CANDIDATE_FACTOR if options.rerank else options.top_k

        self._enter(SearchState.EMBED, filters)
        try:
            vector = await self.embedder.embed(query, timeout=deadline - loop.time())
        except EmbeddingError as exc:
            logger.warning("Query embedding failed: %s", exc)
            stale = self.cache.get_stale(query, filters, options)
            if stale is not None:
                return stale
            raise SearchUnavailable(
                "Could not embed the query", errors=[exc], retryable=exc.retryable
            ) from exc

        errors: list[BaseException] = []
        results: list[SearchResult] | None = None

        if not self.force_secondary:
            self._enter(SearchState.PRIMARY_QUERY, filters)
            remaining = deadline - loop.time()
            cap = min(self.primary_query_timeout, remaining)
            if self._can_fall_back():
                cap = min(cap, remaining * PRIMARY_BUDGET_SHARE)
            try:
                async with asyncio.timeout(cap):
                    results = await self.primary.search(
                        query, vector, filters, fetch_k, options.min_score, timeout=cap
                    )
            except InvalidSearchRequest:
                raise
            except TimeoutError:
                errors.append(PrimaryStoreTimeout(f"Primary query exceeded {cap:.2f}s"))
            except PrimaryStoreError as exc:
                errors.append(exc)
            except Exception as exc:
                logger.warning("Unexpected primary store failure", exc_info=True)
                errors.append(PrimaryStoreError(str(exc)))

            if results is None:
                logger.warning("Primary search failed: %s", errors[-1])
                stale = self.cache.get_stale(query, filters, options)
                if stale is not None:
                    return stale

        if results is None:
            results = await self._search_secondary(query, vector, filters, options, fetch_k, errors)

        self._enter(SearchState.POST_PROCESS, filters)
        processed = self._post_process(query, results, options)
        self.cache.set(query, filters, options, processed)
        return processed

    async def _search_secondary(
        self,
        query: str,
        vector: list[float],
        filters: SearchFilters,
        options: SearchOptions,
        fetch_k: int,
        errors: list[BaseException],
    ) -> list[SearchResult]:
        if self.secondary is None or not (self.fallback_enabled or self.force_secondary):
            raise SearchUnavailable(
                "Primary vector store failed and fallback is disabled",
                errors=errors,
                retryable=True,
            )

        self._enter(SearchState.SECONDARY_QUERY, filters)
        try:
            return await self.secondary.search(query, vector, filters, fetch_k, options.min_score)
        except InvalidSearchRequest:
            raise
        except SecondaryStoreError as exc:
            errors.append(exc)
        except Exception as exc:
            logger.warning("Unexpected secondary store failure", exc_info=True)
            errors.append(SecondaryStoreError(str(exc)))
        logger.error("Secondary search failed: %s", errors[-1])
        raise SearchUnavailable("All vector stores failed", errors=errors, retryable=True)

    def _post_process(
        self, query: str, results: list[SearchResult], options: SearchOptions
    ) -> list[SearchResult]:
        processed = [r for r in results if r.score >= options.min_score]
        if options.rerank:
            processed = rerank(query, processed, options.top_k)
            processed = [r for r in processed if r.score >= options.min_score]
        if options.hybrid:
            keywords = options.keywords or extract_query_keywords(query)
            processed = list(
                self.scorer.fuse(
                    processed, query, keywords, options.vector_weight, options.keyword_weight
                )
            )
        processed = processed[: options.top_k]
        if not options.include_metadata:
            processed = [r.model_copy(update={"metadata": {}}) for r in processed]
        return processed

    def _can_fall_back(self) -> bool:
        return self.secondary is not None and self.fallback_enabled

    def _enter(self, state: SearchState, filters: SearchFilters) -> None:
        logger.debug("search[%s] → %s", filters.organization_id, state)

    # -- Convenience searches --

    async def hybrid_search(
        self,
        query: str,
        keywords: list[str],
        filters: SearchFilters,
        options: SearchOptions | None = None,
    ) -> list[HybridSearchResult]:
        """Vector search fused with an explicit keyword list."""
        options = options or SearchOptions()
        vector_results = await self.search(
            query, filters, options.model_copy(update={"hybrid": False})
        )
        if not vector_results:
            return []
        fused = self.scorer.fuse(
            vector_results, query, keywords, options.vector_weight, options.keyword_weight
        )
        stats = self.scorer.stats(fused)
        logger.info(
            "Hybrid search: %d results, %.1f%% keyword coverage,"
            " avg vector %.3f keyword %.3f hybrid %.3f",
            stats.total_results,
            stats.keyword_coverage,
            stats.avg_vector_score,
            stats.avg_keyword_score,
            stats.avg_hybrid_score,
        )
        return fused

    async def find_similar_requirements(
        self, requirement: str, organization_id: str, options: SearchOptions | None = None
    ) -> list[SearchResult]:
        """Search solicitations, contracts and amendments."""
        filters = SearchFilters(
            organization_id=organization_id, document_types=SIMILAR_REQUIREMENT_TYPES
        )
        return await self.search(requirement, filters, options)

    async def find_similar_experience(
        self, requirement: str, organization_id: str, options: SearchOptions | None = None
    ) -> list[SearchResult]:
        """Search past performance and capability statements."""
        filters = SearchFilters(
            organization_id=organization_id, document_types=SIMILAR_EXPERIENCE_TYPES
        )
        return await self.search(requirement, filters, options)

    # -- Service control --

    async def health_check(self) -> ServiceHealth:
        """Probe both stores. The secondary is only probed when it could serve traffic."""
        primary_error = await _probe(self.primary)
        secondary_error: str | None = "fallback disabled"
        if self.secondary is not None and (self.fallback_enabled or self.force_secondary):
            secondary_error = await _probe(self.secondary)
        elif self.secondary is None:
            secondary_error = "not configured"
        return ServiceHealth(
            primary_available=primary_error is None,
            secondary_available=secondary_error is None,
            fallback_enabled=self.fallback_enabled,
            force_secondary=self.force_secondary,
            primary_error=primary_error,
            secondary_error=secondary_error,
        )

    def set_fallback_enabled(self, enabled: bool) -> None:
        """Allow or forbid falling back to the secondary store."""
        self.fallback_enabled = enabled
        logger.info("Fallback %s", "enabled" if enabled else "disabled")

    def force_fallback_mode(self, enabled: bool) -> None:
        """Route every search straight to the secondary store (or stop doing so)."""
        self.force_secondary = enabled
        logger.info("Forced secondary mode %s", "on" if enabled else "off")

    def get_service_info(self) -> ServiceInfo:
        """Which services currently answer searches."""
        return ServiceInfo(
            primary_service=self.primary_service,
            fallback_service=self.secondary_service if self.fallback_enabled else None,
            fallback_enabled=self.fallback_enabled,
            force_secondary=self.force_secondary,
        )

    async def close(self) -> None:
        """Release the embedding client."""
        await self.embedder.close()


async def _probe(store: VectorStoreAdapter) -> str | None:
    try:
        await store.ping()
    except Exception as exc:
        logger.warning("%s store unhealthy: %s", store.name, exc)
        return str(exc) or type(exc).__name__
    return None
