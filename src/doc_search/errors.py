"""Exception hierarchy for the search pipeline.

Callers normally only see two kinds of failure: :class:`InvalidSearchRequest`
(fix the request, never retried or routed to the fallback store) and
:class:`SearchUnavailable` (every recovery path was exhausted; ``retryable``
says whether trying again shortly makes sense). The finer-grained classes are
raised by the individual components and collected on ``SearchUnavailable``.
"""

from __future__ import annotations

from collections.abc import Sequence

__all__ = [
    "DocSearchError",
    "EmbeddingAuthFailed",
    "EmbeddingError",
    "EmbeddingMalformedResponse",
    "EmbeddingRateLimited",
    "EmbeddingRejected",
    "EmbeddingTimeout",
    "EmbeddingUnavailable",
    "InvalidNamespace",
    "InvalidSearchRequest",
    "OrganizationNotFound",
    "PrimaryStoreError",
    "PrimaryStoreTimeout",
    "SearchUnavailable",
    "SecondaryStoreError",
    "VectorStoreError",
]


class DocSearchError(RuntimeError):
    """Base exception for document search failures."""

    retryable: bool = False


# -- Embedding --


class EmbeddingError(DocSearchError):
    """Raised when a query embedding could not be produced."""


class EmbeddingTimeout(EmbeddingError):
    """The embedding call did not finish within its deadline."""


class EmbeddingUnavailable(EmbeddingError):
    """The embedding API is down or unreachable (5xx, connection failure)."""

    retryable = True


class EmbeddingAuthFailed(EmbeddingError):
    """The embedding API rejected our credentials, or none are configured."""


class EmbeddingRateLimited(EmbeddingError):
    """The embedding API is throttling us."""

    retryable = True


class EmbeddingMalformedResponse(EmbeddingError):
    """The embedding API answered, but not with a usable vector."""


class EmbeddingRejected(EmbeddingError):
    """The embedding API refused the input (4xx other than auth/rate limit)."""


# -- Vector stores --


class VectorStoreError(DocSearchError):
    """Raised by a vector store adapter."""


class PrimaryStoreError(VectorStoreError):
    """The primary (remote) vector index failed."""


class PrimaryStoreTimeout(PrimaryStoreError):
    """The primary vector index did not answer in time."""


class SecondaryStoreError(VectorStoreError):
    """The secondary (relational) vector store failed."""


# -- Request validation --


class InvalidSearchRequest(DocSearchError, ValueError):
    """The request itself is malformed. Never triggers a fallback."""


class OrganizationNotFound(InvalidSearchRequest):
    """The organization has no record in the document store."""


class InvalidNamespace(InvalidSearchRequest):
    """A namespace name failed validation."""


# -- Terminal --


class SearchUnavailable(DocSearchError):
    """No path (cache, primary, secondary) produced a result."""

    def __init__(
        self,
        message: str,
        *,
        errors: Sequence[BaseException] = (),
        retryable: bool = True,
    ) -> None:
        super().__init__(message)
        self.errors = tuple(errors)
        self.retryable = retryable

    def __str__(self) -> str:
        base = super().__str__()
        if not self.errors:
            return base
        causes = "; ".join(f"{type(e).__name__}: {e}" for e in self.errors)
        return f"{base} ({causes})"
