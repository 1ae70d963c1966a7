"""OpenAI-compatible embedding client with classified failures."""

import asyncio
import logging
from typing import Protocol

import httpx

from doc_search.config import (
    get_embedding_dim,
    get_embedding_model,
    get_embedding_timeout,
    get_embedding_url,
    get_openai_api_key,
)
from doc_search.errors import (
    EmbeddingAuthFailed,
    EmbeddingMalformedResponse,
    EmbeddingRateLimited,
    EmbeddingRejected,
    EmbeddingTimeout,
    EmbeddingUnavailable,
)

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    """Anything that turns text into a fixed-dimension vector."""

    async def embed(self, text: str, *, timeout: float | None = None) -> list[float]:
        """Embed ``text``, raising an EmbeddingError subclass on failure."""
        ...

    async def close(self) -> None:
        """Release resources."""
        ...


class EmbeddingClient:
    """Calls ``POST {base_url}/embeddings`` and returns one vector per call.

    No retries: the orchestrator decides what a failure means for the request.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        dimensions: int | None = None,
        timeout: float | None = None,
    ):
        """Initialize; unset arguments are read from configuration."""
        self._http = http_client
        self._api_key = api_key if api_key is not None else get_openai_api_key()
        self._base_url = (base_url or get_embedding_url()).rstrip("/")
        self.model = model or get_embedding_model()
        self.dimensions = dimensions or get_embedding_dim()
        self._timeout = timeout or get_embedding_timeout()

    async def embed(self, text: str, *, timeout: float | None = None) -> list[float]:
        """Generate an embedding vector for ``text``.

        ``timeout`` can only shorten the configured timeout, never extend it.
        """
        if not self._api_key:
            raise EmbeddingAuthFailed("No embedding API key configured")

        budget = self._timeout if timeout is None else min(timeout, self._timeout)
        if budget <= 0:
            raise EmbeddingTimeout("No time left to generate the query embedding")

        try:
            async with asyncio.timeout(budget):
                resp = await self._get_client().post(
                    f"{self._base_url}/embeddings",
                    json={"input": text, "model": self.model, "encoding_format": "float"},
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    timeout=budget,
                )
        except (TimeoutError, httpx.TimeoutException) as exc:
            raise EmbeddingTimeout(f"Embedding request exceeded {budget:.1f}s") from exc
        except httpx.HTTPError as exc:
            raise EmbeddingUnavailable(f"Embedding API unreachable: {exc}") from exc

        _raise_for_status(resp)
        return self._parse(resp)

    def _parse(self, resp: httpx.Response) -> list[float]:
        try:
            vector = resp.json()["data"][0]["embedding"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise EmbeddingMalformedResponse("Embedding response has no data[0].embedding") from exc

        if not isinstance(vector, list) or not all(
            isinstance(v, int | float) and not isinstance(v, bool) for v in vector
        ):
            raise EmbeddingMalformedResponse("Embedding is not a list of numbers")
        if len(vector) != self.dimensions:
            raise EmbeddingMalformedResponse(
                f"Embedding has {len(vector)} dimensions, expected {self.dimensions}"
            )
        return [float(v) for v in vector]

    def _get_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient()
        return self._http

    async def close(self) -> None:
        """Close the HTTP client if open."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None


def _raise_for_status(resp: httpx.Response) -> None:
    status = resp.status_code
    if status < 400:
        return
    detail = resp.text[:200]
    if status in (401, 403):
        raise EmbeddingAuthFailed(f"Embedding API rejected credentials ({status})")
    if status == 429:
        raise EmbeddingRateLimited("Embedding API rate limit exceeded")
    if status >= 500:
        raise EmbeddingUnavailable(f"Embedding API error {status}: {detail}")
    logger.warning("Embedding API rejected input (%d): %s", status, detail)
    raise EmbeddingRejected(f"Embedding API rejected input ({status}): {detail}")
