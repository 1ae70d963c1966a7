"""Organization → primary-index namespace resolution.

Every organization's vectors live in their own namespace, named
``{sanitized name or slug}_{organization_id}``. The mapping is resolved once
per process and cached; a per-organization lock makes concurrent first calls
share one creation.
"""

import asyncio
import logging
import re

from doc_search.errors import InvalidNamespace, OrganizationNotFound
from doc_search.models.index import NamespaceInfo
from doc_search.search.pinecone import VectorIndex
from doc_search.store.documents import DocumentStore

logger = logging.getLogger(__name__)

MAX_NAME_PART = 40
MAX_NAMESPACE_LENGTH = 64

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_NAMESPACE_RE = re.compile(r"^[a-z0-9_-]+$")


def sanitize_namespace_part(name: str) -> str:
    """Lowercase, collapse non-alphanumeric runs to ``-``, trim, cap at 40 chars."""
    cleaned = _NON_ALNUM_RE.sub("-", name.lower()).strip("-")
    cleaned = cleaned[:MAX_NAME_PART].rstrip("-")
    return cleaned or "org"


def validate_namespace(namespace: str) -> None:
    """Raise InvalidNamespace unless ``namespace`` is safe to send to the index."""
    if not namespace:
        raise InvalidNamespace("Namespace must not be empty")
    if len(namespace) > MAX_NAMESPACE_LENGTH:
        raise InvalidNamespace(
            f"Namespace '{namespace}' exceeds {MAX_NAMESPACE_LENGTH} characters"
        )
    if not _NAMESPACE_RE.match(namespace):
        raise InvalidNamespace(f"Namespace '{namespace}' contains invalid characters")
    if namespace[0] in "-_" or namespace[-1] in "-_":
        raise InvalidNamespace(f"Namespace '{namespace}' must start and end alphanumeric")


def build_namespace(organization_id: str, name: str) -> tuple[str, str]:
    """Return (namespace, sanitized name part) for an organization."""
    sanitized = sanitize_namespace_part(name)
    return f"{sanitized}_{organization_id}", sanitized


class NamespaceResolver:
    """Resolves and caches the namespace for each organization."""

    def __init__(self, documents: DocumentStore, index: VectorIndex):
        """Initialize with the document store and the primary index client."""
        self._documents = documents
        self._index = index
        self._cache: dict[str, NamespaceInfo] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def resolve(self, organization_id: str) -> NamespaceInfo:
        """Namespace for ``organization_id``, creating it on first use.

        Raises OrganizationNotFound for unknown organizations and
        InvalidNamespace if the derived name is unusable.
        """
        cached = self._cache.get(organization_id)
        if cached is not None:
            return cached

        lock = self._locks.setdefault(organization_id, asyncio.Lock())
        async with lock:
            cached = self._cache.get(organization_id)
            if cached is not None:
                return cached

            org = await self._documents.get_organization(organization_id)
            if org is None:
                raise OrganizationNotFound(f"Organization {organization_id} not found")

            namespace, sanitized = build_namespace(org.id, org.name or org.slug)
            validate_namespace(namespace)
            created = await self._index.ensure_namespace(namespace)

            info = NamespaceInfo(
                organization_id=org.id,
                organization_name=org.name,
                namespace=namespace,
                sanitized_name=sanitized,
                created=created,
            )
            self._cache[organization_id] = info
            logger.info("Resolved namespace %s for organization %s", namespace, organization_id)
            return info

    def cached(self) -> dict[str, NamespaceInfo]:
        """Snapshot of every namespace resolved so far."""
        return dict(self._cache)

    def forget(self, organization_id: str) -> None:
        """Drop the cached mapping so the next resolve re-reads the organization."""
        self._cache.pop(organization_id, None)
        self._locks.pop(organization_id, None)

    async def list_organization_namespaces(self, organization_id: str) -> list[str]:
        """Namespaces in the index that belong to ``organization_id``."""
        stats = await self._index.describe_stats()
        suffix = f"_{organization_id}"
        return sorted(name for name in stats.namespaces if name.endswith(suffix))

    async def namespace_stats(self, namespace: str) -> int:
        """Vector count stored in ``namespace`` (0 when it does not exist yet)."""
        stats = await self._index.describe_stats()
        return stats.namespaces.get(namespace, 0)
