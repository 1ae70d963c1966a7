"""Keyword-density reranking of vector results."""

from doc_search.models.search import SearchResult
from doc_search.search.results import clamp_score, query_words, sort_results

RERANK_VECTOR_WEIGHT = 0.7
RERANK_KEYWORD_WEIGHT = 0.3

# Candidates fetched per requested result when reranking
RERANK_CANDIDATE_FACTOR = 3


def keyword_density(query: str, text: str) -> float:
    """Query-word occurrences in ``text`` per query word, capped at 1."""
    words = query_words(query)
    if not words:
        return 0.0
    lowered = text.lower()
    hits = sum(lowered.count(word) for word in words)
    return min(1.0, hits / len(words))


def rerank(query: str, results: list[SearchResult], top_k: int) -> list[SearchResult]:
    """Blend each score with keyword density and keep the best ``top_k``."""
    rescored = [
        result.model_copy(
            update={
                "score": clamp_score(
                    RERANK_VECTOR_WEIGHT * result.score
                    + RERANK_KEYWORD_WEIGHT * keyword_density(query, result.chunk_text)
                )
            }
        )
        for result in results
    ]
    return sort_results(rescored)[:top_k]
