"""Read access to the authoritative document store."""

import logging
from typing import Protocol

from doc_search.db.backend import Database
from doc_search.db.queries import (
    count_documents,
    delete_document,
    get_documents,
    get_organization,
    insert_document,
    insert_organization,
    list_document_ids,
)
from doc_search.models.document import Document, DocumentChunk, Organization

logger = logging.getLogger(__name__)


class DocumentStore(Protocol):
    """What the search pipeline needs from the source of truth for documents."""

    async def get_document_chunks(self, document_ids: list[str]) -> dict[str, list[DocumentChunk]]:
        """Ordered chunks per document. Unknown documents are absent from the result."""
        ...

    async def get_organization(self, organization_id: str) -> Organization | None:
        """The organization, or None when it does not exist."""
        ...

    async def list_document_ids(self, organization_id: str | None = None) -> set[str]:
        """Every live document ID, optionally for one organization."""
        ...

    async def count_documents(self) -> int:
        """Number of live documents."""
        ...


class SqlDocumentStore:
    """DocumentStore backed by the ``documents`` and ``organizations`` tables."""

    def __init__(self, db: Database):
        """Initialize with a database connection."""
        self.db = db

    async def get_document_chunks(self, document_ids: list[str]) -> dict[str, list[DocumentChunk]]:
        """Ordered chunks per document. Unknown documents are absent from the result."""
        documents = await get_documents(self.db, sorted(set(document_ids)))
        return {
            doc.id: sorted(doc.chunks, key=lambda chunk: chunk.chunk_index) for doc in documents
        }

    async def get_organization(self, organization_id: str) -> Organization | None:
        """The organization, or None when it does not exist."""
        return await get_organization(self.db, organization_id)

    async def list_document_ids(self, organization_id: str | None = None) -> set[str]:
        """Every live document ID, optionally for one organization."""
        return await list_document_ids(self.db, organization_id)

    async def count_documents(self) -> int:
        """Number of live documents."""
        return await count_documents(self.db)

    async def add_organization(self, org: Organization) -> None:
        """Register an organization."""
        await insert_organization(self.db, org)
        logger.info("Added organization %s (%s)", org.id, org.name)

    async def add_document(self, doc: Document) -> None:
        """Store a document and its chunks."""
        await insert_document(self.db, doc)
        logger.info("Added document %s with %d chunks", doc.id, len(doc.chunks))

    async def remove_document(self, document_id: str) -> bool:
        """Remove a document. Its vectors stay behind until cleanup runs."""
        removed = await delete_document(self.db, document_id)
        if removed:
            logger.info("Removed document %s", document_id)
        return removed
