"""Hybrid scoring: fuse vector similarity with keyword relevance.

Each keyword found ``c`` times (case-insensitive) contributes ``c / (c + 1)``;
the keyword score is the mean over keywords and stays in [0, 1).
"""

import logging
import re

from doc_search.models.search import (
    HybridSearchResult,
    HybridSearchStats,
    ScoringExplanation,
    SearchResult,
)
from doc_search.search.results import clamp_score

logger = logging.getLogger(__name__)

_NON_WORD_RE = re.compile(r"[^\w]")


def normalize_keywords(keywords: list[str]) -> list[str]:
    """Lowercase, strip, drop empties and duplicates (first occurrence wins)."""
    seen: dict[str, None] = {}
    for keyword in keywords:
        cleaned = keyword.strip().lower()
        if cleaned:
            seen.setdefault(cleaned, None)
    return list(seen)


def extract_query_keywords(query: str) -> list[str]:
    """Words of ``query`` longer than two characters, punctuation removed."""
    words = [
        _NON_WORD_RE.sub("", word) for word in query.lower().split() if len(word) > 2
    ]
    return normalize_keywords([w for w in words if w])


def keyword_score(text: str, keywords: list[str]) -> tuple[float, list[str]]:
    """Return (score, matched keywords) for ``text``."""
    if not keywords:
        return 0.0, []
    lowered = text.lower()
    total = 0.0
    matched = []
    for keyword in keywords:
        count = lowered.count(keyword)
        if count:
            matched.append(keyword)
        total += count / (count + 1)
    return total / len(keywords), matched


class HybridScorer:
    """Re-scores vector results with keyword relevance."""

    def fuse(
        self,
        results: list[SearchResult],
        query: str,
        keywords: list[str],
        vector_weight: float = 0.7,
        keyword_weight: float = 0.3,
    ) -> list[HybridSearchResult]:
        """Fused results ordered by hybrid score.

        Ties break on vector score, then document ID, then chunk index.
        ``query`` is only used to derive keywords when none are given.
        """
        terms = normalize_keywords(keywords) if keywords else extract_query_keywords(query)
        fused = []
        for result in results:
            k_score, matched = keyword_score(result.chunk_text, terms)
            hybrid = clamp_score(vector_weight * result.score + keyword_weight * k_score)
            fused.append(
                HybridSearchResult(
                    **result.model_dump(include=set(SearchResult.model_fields)),
                    vector_score=result.score,
                    keyword_score=k_score,
                    hybrid_score=hybrid,
                    matched_keywords=matched,
                )
            )
        fused.sort(key=lambda r: (-r.hybrid_score, -r.vector_score, r.document_id, r.chunk_index))
        return fused

    def stats(self, results: list[HybridSearchResult]) -> HybridSearchStats:
        """Averages and keyword coverage over a fused result set."""
        n = len(results)
        if n == 0:
            return HybridSearchStats(
                total_results=0,
                keyword_coverage=0.0,
                avg_vector_score=0.0,
                avg_keyword_score=0.0,
                avg_hybrid_score=0.0,
            )
        with_keywords = sum(1 for r in results if r.matched_keywords)
        return HybridSearchStats(
            total_results=n,
            keyword_coverage=100.0 * with_keywords / n,
            avg_vector_score=sum(r.vector_score for r in results) / n,
            avg_keyword_score=sum(r.keyword_score for r in results) / n,
            avg_hybrid_score=sum(r.hybrid_score for r in results) / n,
        )

    def explain(
        self,
        result: HybridSearchResult,
        vector_weight: float = 0.7,
        keyword_weight: float = 0.3,
    ) -> ScoringExplanation:
        """Break a hybrid score down into its weighted components."""
        vector_component = vector_weight * result.vector_score
        keyword_component = keyword_weight * result.keyword_score
        lines = [
            f"Vector similarity {result.vector_score:.3f} x weight {vector_weight:.2f}"
            f" = {vector_component:.3f}",
            f"Keyword relevance {result.keyword_score:.3f} x weight {keyword_weight:.2f}"
            f" = {keyword_component:.3f}",
        ]
        if result.matched_keywords:
            lines.append(f"Matched keywords: {', '.join(result.matched_keywords)}")
        else:
            lines.append("No keyword matches")
        lines.append(f"Final score: {result.hybrid_score:.3f}")
        return ScoringExplanation(
            vector_component=vector_component,
            keyword_component=keyword_component,
            final_score=result.hybrid_score,
            explanation=lines,
        )
