"""Vector index, namespace, and maintenance models."""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class HealthLevel(StrEnum):
    """Coarse health classification, ordered from best to worst."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def severity(self) -> int:
        """Numeric rank; higher is worse."""
        return _SEVERITY[self]

    @classmethod
    def worst(cls, levels: "list[HealthLevel]") -> "HealthLevel":
        """Return the worst level in ``levels`` (healthy when empty)."""
        if not levels:
            return cls.HEALTHY
        return max(levels, key=lambda level: level.severity)


_SEVERITY = {HealthLevel.HEALTHY: 0, HealthLevel.WARNING: 1, HealthLevel.CRITICAL: 2}


class IndexMatch(BaseModel):
    """A raw nearest-neighbor hit from the primary index."""

    id: str
    score: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class IndexDescription(BaseModel):
    """Snapshot of the primary index as reported by the backend."""

    total_vector_count: int = 0
    dimension: int | None = None
    index_fullness: float = 0.0
    namespaces: dict[str, int] = Field(default_factory=dict)


class NamespaceInfo(BaseModel):
    """Mapping from an organization to its primary-index partition."""

    organization_id: str
    organization_name: str
    namespace: str
    sanitized_name: str
    created: bool = False


class IndexStats(BaseModel):
    """Read-only statistics for one vector store (or the combined view)."""

    total_vectors: int = 0
    organizations: int = 0
    documents: int = 0
    orphaned_vectors: int = 0
    storage_size: str | None = None
    last_optimized: datetime | None = None
    health: HealthLevel = HealthLevel.HEALTHY


class IndexStatsReport(BaseModel):
    """Per-backend stats; a backend is None when it could not be queried."""

    primary: IndexStats | None
    secondary: IndexStats | None
    combined: IndexStats


class CleanupResult(BaseModel):
    """Outcome of an orphaned-vector sweep."""

    orphaned_vectors_removed: int = 0
    documents_processed: int = 0
    vectors_scanned: int = 0
    failures: int = 0
    time_elapsed: float = 0.0


class CleanupReport(BaseModel):
    """Per-backend cleanup results plus their sum."""

    primary: CleanupResult | None
    secondary: CleanupResult | None
    combined: CleanupResult


class OptimizationResult(BaseModel):
    """Outcome of an optimize pass. Managed backends only return advice."""

    indexes_optimized: int = 0
    time_elapsed: float = 0.0
    recommendations: list[str] = Field(default_factory=list)


class OptimizationReport(BaseModel):
    """Per-backend optimization results plus their sum."""

    primary: OptimizationResult | None
    secondary: OptimizationResult | None
    combined: OptimizationResult


class ServiceHealth(BaseModel):
    """Availability of both backends and the current fallback flags."""

    primary_available: bool
    secondary_available: bool
    fallback_enabled: bool
    force_secondary: bool = False
    primary_error: str | None = None
    secondary_error: str | None = None


class ServiceInfo(BaseModel):
    """Which services currently serve searches."""

    primary_service: str
    fallback_service: str | None
    fallback_enabled: bool
    force_secondary: bool


class IndexVector(BaseModel):
    """A vector to write into the primary index."""

    id: str
    values: list[float]
    metadata: dict[str, Any] = Field(default_factory=dict)
