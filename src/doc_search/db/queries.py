"""Query helpers for common database operations.

Everything here is portable ``?``-placeholder SQL that runs unchanged on both
backends. Similarity search lives on the backends themselves.
"""

import json
from datetime import UTC, datetime

from doc_search.db.backend import Database, Row
from doc_search.models.document import Document, DocumentChunk, Organization

_ORPHAN_PREDICATE = (
    "NOT EXISTS (SELECT 1 FROM documents d WHERE d.id = document_vectors.document_id)"
)


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def row_to_organization(row: Row) -> Organization:
    """Convert a database row to an Organization."""
    return Organization(id=row["id"], name=row["name"], slug=row["slug"])


def row_to_document(row: Row) -> Document:
    """Convert a database row to a Document."""
    return Document(
        id=row["id"],
        organization_id=row["organization_id"],
        name=row["name"],
        document_type=row["document_type"],
        naics_codes=json.loads(row["naics_codes"]),
        tags=json.loads(row["tags"]),
        chunks=[DocumentChunk(**chunk) for chunk in json.loads(row["chunks"])],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


# -- Organizations --


async def insert_organization(db: Database, org: Organization) -> None:
    """Insert an organization."""
    await db.execute(
        "INSERT INTO organizations (id, name, slug, created_at) VALUES (?, ?, ?, ?)",
        (org.id, org.name, org.slug, _now_iso()),
    )
    await db.commit()


async def get_organization(db: Database, organization_id: str) -> Organization | None:
    """Get a single organization by ID."""
    cursor = await db.execute("SELECT * FROM organizations WHERE id = ?", (organization_id,))
    row = await cursor.fetchone()
    return row_to_organization(row) if row else None


# -- Documents --


async def insert_document(db: Database, doc: Document) -> None:
    """Insert a document with its chunks."""
    await db.execute(
        """INSERT INTO documents
        (id, organization_id, name, document_type, naics_codes, tags, chunks, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            doc.id,
            doc.organization_id,
            doc.name,
            doc.document_type,
            json.dumps(doc.naics_codes),
            json.dumps(doc.tags),
            json.dumps([chunk.model_dump() for chunk in doc.chunks]),
            doc.created_at.isoformat() if doc.created_at else _now_iso(),
        ),
    )
    await db.commit()


async def delete_document(db: Database, document_id: str) -> bool:
    """Delete a document row. Its vectors are left behind as orphans."""
    cursor = await db.execute("DELETE FROM documents WHERE id = ?", (document_id,))
    await db.commit()
    return cursor.rowcount > 0


async def get_documents(db: Database, document_ids: list[str]) -> list[Document]:
    """Fetch documents by ID. Unknown IDs are silently skipped."""
    if not document_ids:
        return []
    placeholders = ", ".join("?" for _ in document_ids)
    cursor = await db.execute(
        f"SELECT * FROM documents WHERE id IN ({placeholders})", list(document_ids)
    )
    return [row_to_document(row) for row in await cursor.fetchall()]


async def list_document_ids(db: Database, organization_id: str | None = None) -> set[str]:
    """IDs of every document, optionally limited to one organization."""
    if organization_id is None:
        cursor = await db.execute("SELECT id FROM documents")
    else:
        cursor = await db.execute(
            "SELECT id FROM documents WHERE organization_id = ?", (organization_id,)
        )
    return {row[0] for row in await cursor.fetchall()}


async def count_documents(db: Database) -> int:
    """Count documents."""
    cursor = await db.execute("SELECT COUNT(*) FROM documents")
    row = await cursor.fetchone()
    return row[0] if row else 0


# -- Vector table statistics and cleanup --


async def count_vectors(db: Database) -> int:
    """Count stored vectors."""
    cursor = await db.execute("SELECT COUNT(*) FROM document_vectors")
    row = await cursor.fetchone()
    return row[0] if row else 0


async def count_vector_owners(db: Database) -> tuple[int, int]:
    """Return (distinct organizations, distinct documents) that have vectors."""
    cursor = await db.execute(
        "SELECT COUNT(DISTINCT organization_id), COUNT(DISTINCT document_id)"
        " FROM document_vectors"
    )
    row = await cursor.fetchone()
    return (row[0], row[1]) if row else (0, 0)


async def count_orphaned_vectors(db: Database) -> int:
    """Count vectors whose document no longer exists."""
    cursor = await db.execute(f"SELECT COUNT(*) FROM document_vectors WHERE {_ORPHAN_PREDICATE}")
    row = await cursor.fetchone()
    return row[0] if row else 0


async def delete_orphaned_vectors(db: Database) -> int:
    """Delete every vector whose document no longer exists. Returns rows removed."""
    cursor = await db.execute(f"DELETE FROM document_vectors WHERE {_ORPHAN_PREDICATE}")
    await db.commit()
    return max(cursor.rowcount, 0)


# -- Maintenance log --


async def record_maintenance(db: Database, operation: str) -> datetime:
    """Record that a maintenance operation just completed."""
    now = datetime.now(UTC)
    await db.execute(
        """INSERT INTO maintenance_log (operation, completed_at) VALUES (?, ?)
        ON CONFLICT (operation) DO UPDATE SET completed_at = excluded.completed_at""",
        (operation, now.isoformat()),
    )
    await db.commit()
    return now


async def last_maintenance(db: Database, operation: str) -> datetime | None:
    """When ``operation`` last completed, if ever."""
    cursor = await db.execute(
        "SELECT completed_at FROM maintenance_log WHERE operation = ?", (operation,)
    )
    row = await cursor.fetchone()
    return datetime.fromisoformat(row[0]) if row else None
