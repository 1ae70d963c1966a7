"""Environment-variable-based configuration."""

import os
from pathlib import Path


def get_db_path() -> Path:
    """Return the SQLite database file path from DOCSEARCH_DB_PATH."""
    raw = os.environ.get("DOCSEARCH_DB_PATH", "~/.local/share/doc_search/documents.db")
    return Path(raw).expanduser()


def get_database_url() -> str | None:
    """Return the PostgreSQL URL from DOCSEARCH_DATABASE_URL, if set."""
    return os.environ.get("DOCSEARCH_DATABASE_URL") or None


def get_openai_api_key() -> str | None:
    """Return the embedding API key from DOCSEARCH_OPENAI_API_KEY or OPENAI_API_KEY."""
    return os.environ.get("DOCSEARCH_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY")


def get_embedding_url() -> str:
    """Return the embedding API base URL from DOCSEARCH_EMBEDDING_URL."""
    return os.environ.get("DOCSEARCH_EMBEDDING_URL", "https://api.openai.com/v1").rstrip("/")


def get_embedding_model() -> str:
    """Return the embedding model name from DOCSEARCH_EMBEDDING_MODEL."""
    return os.environ.get("DOCSEARCH_EMBEDDING_MODEL", "text-embedding-3-small")


def get_embedding_dim() -> int:
    """Return the embedding vector dimensions from DOCSEARCH_EMBEDDING_DIM."""
    return int(os.environ.get("DOCSEARCH_EMBEDDING_DIM", "1536"))


def get_embedding_timeout() -> float:
    """Return the embedding request timeout in seconds from DOCSEARCH_EMBEDDING_TIMEOUT."""
    return float(os.environ.get("DOCSEARCH_EMBEDDING_TIMEOUT", "30.0"))


def get_pinecone_api_key() -> str | None:
    """Return the Pinecone API key from DOCSEARCH_PINECONE_API_KEY."""
    return os.environ.get("DOCSEARCH_PINECONE_API_KEY") or None


def get_pinecone_index_host() -> str | None:
    """Return the Pinecone index host URL from DOCSEARCH_PINECONE_INDEX_HOST."""
    raw = os.environ.get("DOCSEARCH_PINECONE_INDEX_HOST")
    if not raw:
        return None
    if not raw.startswith(("http://", "https://")):
        raw = f"https://{raw}"
    return raw.rstrip("/")


def get_pinecone_timeout() -> float:
    """Return the Pinecone request timeout in seconds from DOCSEARCH_PINECONE_TIMEOUT."""
    return float(os.environ.get("DOCSEARCH_PINECONE_TIMEOUT", "8.0"))


def is_fallback_enabled() -> bool:
    """Return True if DOCSEARCH_ENABLE_FALLBACK is set to TRUE."""
    return os.environ.get("DOCSEARCH_ENABLE_FALLBACK", "").upper() == "TRUE"


def get_document_search_timeout() -> float:
    """Return the budget for single-document searches from DOCSEARCH_DOCUMENT_TIMEOUT."""
    return float(os.environ.get("DOCSEARCH_DOCUMENT_TIMEOUT", "5.0"))


def get_search_timeout() -> float:
    """Return the budget for open/multi-document searches from DOCSEARCH_SEARCH_TIMEOUT."""
    return float(os.environ.get("DOCSEARCH_SEARCH_TIMEOUT", "10.0"))


def get_primary_query_timeout() -> float:
    """Return the cap for one primary index query from DOCSEARCH_PRIMARY_QUERY_TIMEOUT."""
    return float(os.environ.get("DOCSEARCH_PRIMARY_QUERY_TIMEOUT", "8.0"))


def get_cache_ttl() -> float:
    """Return the result cache TTL in seconds from DOCSEARCH_CACHE_TTL."""
    return float(os.environ.get("DOCSEARCH_CACHE_TTL", "600"))


def get_cache_stale_grace() -> float:
    """Return how long expired entries may still be served on failure."""
    return float(os.environ.get("DOCSEARCH_CACHE_STALE_GRACE", "600"))


def get_cache_max_entries() -> int:
    """Return the result cache capacity from DOCSEARCH_CACHE_MAX_ENTRIES."""
    return int(os.environ.get("DOCSEARCH_CACHE_MAX_ENTRIES", "1000"))


def is_manager_mode() -> bool:
    """Return True if DOCSEARCH_MANAGER is set to TRUE."""
    return os.environ.get("DOCSEARCH_MANAGER", "").upper() == "TRUE"


def get_log_level() -> str:
    """Return the logging level from DOCSEARCH_LOG_LEVEL."""
    return os.environ.get("DOCSEARCH_LOG_LEVEL", "WARNING")
