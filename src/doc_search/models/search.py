"""Search-related models."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Tolerance when checking that the fusion weights sum to at most 1
_WEIGHT_EPSILON = 1e-9


def _sorted_unique(values: list[str] | None) -> list[str] | None:
    if values is None:
        return None
    return sorted(set(values))


class DateRange(BaseModel):
    """Inclusive creation-time window."""

    model_config = ConfigDict(extra="forbid")

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.start > self.end:
            raise ValueError("date_range.start must not be after date_range.end")
        return self


class SearchFilters(BaseModel):
    """Scoping criteria for a search. All restrictions are AND-combined."""

    model_config = ConfigDict(extra="forbid")

    organization_id: str = Field(min_length=1)
    document_id: str | None = None
    document_ids: list[str] | None = None
    document_types: list[str] | None = None
    naics_codes: list[str] | None = None
    tags: list[str] | None = None
    date_range: DateRange | None = None

    @property
    def is_document_scoped(self) -> bool:
        """True when the search is restricted to exactly one document."""
        return self.document_id is not None

    def normalized(self) -> dict[str, Any]:
        """Deterministic representation used for cache keys."""
        return {
            "organization_id": self.organization_id,
            "document_id": self.document_id,
            "document_ids": _sorted_unique(self.document_ids),
            "document_types": _sorted_unique(self.document_types),
            "naics_codes": _sorted_unique(self.naics_codes),
            "tags": _sorted_unique(self.tags),
            "date_range": (
                [self.date_range.start.isoformat(), self.date_range.end.isoformat()]
                if self.date_range
                else None
            ),
        }


class SearchOptions(BaseModel):
    """Behavioral knobs for a search."""

    model_config = ConfigDict(extra="forbid")

    top_k: int = Field(default=10, ge=1, le=100)
    min_score: float = Field(default=0.1, ge=0.0, le=1.0)
    include_metadata: bool = True
    rerank: bool = False
    hybrid: bool = False
    vector_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    keyword_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    keywords: list[str] | None = None

    @model_validator(mode="after")
    def _check_weights(self) -> "SearchOptions":
        if self.vector_weight + self.keyword_weight > 1.0 + _WEIGHT_EPSILON:
            raise ValueError("vector_weight + keyword_weight must not exceed 1")
        return self

    def normalized(self) -> dict[str, Any]:
        """Deterministic representation used for cache keys."""
        data = self.model_dump()
        data["keywords"] = _sorted_unique([k.lower() for k in self.keywords or []]) or None
        return data


class SearchResult(BaseModel):
    """One matched chunk."""

    document_id: str
    document_title: str
    chunk_id: str
    chunk_index: int
    chunk_text: str
    score: float = Field(ge=0.0, le=1.0)
    metadata: dict[str, Any] = Field(default_factory=dict)
    highlights: list[str] = Field(default_factory=list, max_length=3)


class HybridSearchResult(SearchResult):
    """A search result re-scored with keyword relevance.

    ``score`` keeps the vector similarity; ``hybrid_score`` is the fused value
    the list is ordered by.
    """

    vector_score: float = Field(ge=0.0, le=1.0)
    keyword_score: float = Field(ge=0.0, le=1.0)
    hybrid_score: float = Field(ge=0.0, le=1.0)
    matched_keywords: list[str] = Field(default_factory=list)


class HybridSearchStats(BaseModel):
    """Aggregate numbers for a fused result set."""

    total_results: int
    keyword_coverage: float  # percent of results with at least one keyword hit
    avg_vector_score: float
    avg_keyword_score: float
    avg_hybrid_score: float


class ScoringExplanation(BaseModel):
    """Breakdown of how one hybrid score was produced."""

    vector_component: float
    keyword_component: float
    final_score: float
    explanation: list[str]
