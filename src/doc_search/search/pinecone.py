"""Pinecone data-plane client over plain HTTP.

Talks to a single serverless index host. Namespaces are implicit in
Pinecone: they come into existence on first upsert, so ``ensure_namespace``
only reports whether one already holds vectors.
"""

import logging
from typing import Any, Protocol

import httpx

from doc_search.config import get_pinecone_api_key, get_pinecone_index_host, get_pinecone_timeout
from doc_search.errors import PrimaryStoreError, PrimaryStoreTimeout
from doc_search.models.index import IndexDescription, IndexMatch, IndexVector

logger = logging.getLogger(__name__)

API_VERSION = "2024-07"

# Pinecone caps list pages at 100 ids
MAX_LIST_LIMIT = 100


class VectorIndex(Protocol):
    """Operations the search and maintenance code need from the primary index."""

    name: str

    async def query(
        self,
        namespace: str,
        vector: list[float],
        top_k: int,
        metadata_filter: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> list[IndexMatch]:
        """Nearest neighbors within one namespace, best first."""
        ...

    async def upsert(self, namespace: str, vectors: list[IndexVector]) -> int:
        """Insert or overwrite vectors. Returns the number written."""
        ...

    async def delete(self, namespace: str, ids: list[str]) -> None:
        """Delete vectors by ID."""
        ...

    async def list_ids(
        self, namespace: str, *, limit: int = MAX_LIST_LIMIT, pagination_token: str | None = None
    ) -> tuple[list[str], str | None]:
        """One page of vector IDs and the token for the next page (None at the end)."""
        ...

    async def fetch(self, namespace: str, ids: list[str]) -> dict[str, dict[str, Any]]:
        """Metadata for each requested ID that exists."""
        ...

    async def describe_stats(self) -> IndexDescription:
        """Index-wide and per-namespace vector counts."""
        ...

    async def ensure_namespace(self, namespace: str) -> bool:
        """Make sure ``namespace`` can be written to. True when it did not exist yet."""
        ...

    async def close(self) -> None:
        """Release resources."""
        ...


class PineconeIndex:
    """REST client for one Pinecone index host."""

    name = "pinecone"

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        *,
        api_key: str | None = None,
        host: str | None = None,
        timeout: float | None = None,
    ):
        """Initialize; unset arguments are read from configuration."""
        self._http = http_client
        self._api_key = api_key if api_key is not None else get_pinecone_api_key()
        self._host = (host or get_pinecone_index_host() or "").rstrip("/")
        self._timeout = timeout or get_pinecone_timeout()

    @property
    def configured(self) -> bool:
        """True when both an API key and an index host are available."""
        return bool(self._api_key and self._host)

    async def query(
        self,
        namespace: str,
        vector: list[float],
        top_k: int,
        metadata_filter: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> list[IndexMatch]:
        """Nearest neighbors within one namespace, best first."""
        body: dict[str, Any] = {
            "namespace": namespace,
            "vector": vector,
            "topK": top_k,
            "includeMetadata": True,
            "includeValues": False,
        }
        if metadata_filter:
            body["filter"] = metadata_filter
        data = await self._request("POST", "/query", json=body, timeout=timeout)
        try:
            return [
                IndexMatch(id=m["id"], score=m.get("score", 0.0), metadata=m.get("metadata") or {})
                for m in data.get("matches", [])
            ]
        except (KeyError, TypeError, ValueError) as exc:
            raise PrimaryStoreError("Malformed query response from Pinecone") from exc

    async def upsert(self, namespace: str, vectors: list[IndexVector]) -> int:
        """Insert or overwrite vectors. Returns the number written."""
        if not vectors:
            return 0
        data = await self._request(
            "POST",
            "/vectors/upsert",
            json={"namespace": namespace, "vectors": [v.model_dump() for v in vectors]},
        )
        return int(data.get("upsertedCount", len(vectors)))

    async def delete(self, namespace: str, ids: list[str]) -> None:
        """Delete vectors by ID."""
        if not ids:
            return
        await self._request("POST", "/vectors/delete", json={"namespace": namespace, "ids": ids})

    async def list_ids(
        self, namespace: str, *, limit: int = MAX_LIST_LIMIT, pagination_token: str | None = None
    ) -> tuple[list[str], str | None]:
        """One page of vector IDs and the token for the next page (None at the end)."""
        params: dict[str, Any] = {"namespace": namespace, "limit": min(limit, MAX_LIST_LIMIT)}
        if pagination_token:
            params["paginationToken"] = pagination_token
        data = await self._request("GET", "/vectors/list", params=params)
        ids = [v["id"] for v in data.get("vectors", [])]
        next_token = (data.get("pagination") or {}).get("next")
        return ids, next_token or None

    async def fetch(self, namespace: str, ids: list[str]) -> dict[str, dict[str, Any]]:
        """Metadata for each requested ID that exists."""
        if not ids:
            return {}
        data = await self._request(
            "GET", "/vectors/fetch", params=[("namespace", namespace), *(("ids", i) for i in ids)]
        )
        return {
            vector_id: vector.get("metadata") or {}
            for vector_id, vector in (data.get("vectors") or {}).items()
        }

    async def describe_stats(self) -> IndexDescription:
        """Index-wide and per-namespace vector counts."""
        data = await self._request("POST", "/describe_index_stats", json={})
        namespaces = {
            name: int(info.get("vectorCount", 0))
            for name, info in (data.get("namespaces") or {}).items()
        }
        return IndexDescription(
            total_vector_count=int(data.get("totalVectorCount", sum(namespaces.values()))),
            dimension=data.get("dimension"),
            index_fullness=float(data.get("indexFullness", 0.0)),
            namespaces=namespaces,
        )

    async def ensure_namespace(self, namespace: str) -> bool:
        """Report whether ``namespace`` is new. Pinecone creates it on first upsert."""
        stats = await self.describe_stats()
        created = namespace not in stats.namespaces
        if created:
            logger.info("Namespace %s will be created on first upsert", namespace)
        return created

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: Any = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        if not self.configured:
            raise PrimaryStoreError("Pinecone is not configured (API key and index host)")
        budget = self._timeout if timeout is None else min(timeout, self._timeout)
        try:
            resp = await self._get_client().request(
                method,
                f"{self._host}{path}",
                json=json,
                params=params,
                headers={"Api-Key": self._api_key or "", "X-Pinecone-API-Version": API_VERSION},
                timeout=budget,
            )
        except httpx.TimeoutException as exc:
            raise PrimaryStoreTimeout(f"Pinecone {path} exceeded {budget:.1f}s") from exc
        except httpx.HTTPError as exc:
            raise PrimaryStoreError(f"Pinecone {path} failed: {exc}") from exc

        if resp.status_code >= 400:
            raise PrimaryStoreError(
                f"Pinecone {path} returned {resp.status_code}: {resp.text[:200]}"
            )
        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError as exc:
            raise PrimaryStoreError(f"Pinecone {path} returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise PrimaryStoreError(f"Pinecone {path} returned unexpected payload")
        return data

    def _get_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient()
        return self._http

    async def close(self) -> None:
        """Close the HTTP client if open."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None
