"""Document store models."""

from datetime import datetime

from pydantic import BaseModel, Field


class Organization(BaseModel):
    """A tenant. Every document and vector belongs to exactly one."""

    id: str
    name: str = ""
    slug: str = ""


class DocumentChunk(BaseModel):
    """A bounded slice of a document's text, as stored in the source of truth."""

    chunk_index: int = Field(ge=0)
    content: str


class Document(BaseModel):
    """A source document and its ordered chunks."""

    id: str
    organization_id: str
    name: str
    document_type: str | None = None
    naics_codes: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    chunks: list[DocumentChunk] = Field(default_factory=list)
    created_at: datetime | None = None
