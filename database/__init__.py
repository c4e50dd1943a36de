"""Database module for managing the document store.

This module handles:
- Selecting and initializing the document store from the configured URL
- Store lifecycle (init / get / close)

``memory://`` selects the in-process store; ``postgresql://`` URLs select the
PostgreSQL store.
"""

import logging
from typing import Optional

from .exceptions import DatabaseError, DatabaseSchemaError
from .lib.document_store import DocumentStore, DocumentChange, matches, INSERT, UPDATE, DELETE
from .memory import MemoryDocumentStore

logger = logging.getLogger(__name__)

_store: Optional[DocumentStore] = None


async def create_store(db_url: str) -> DocumentStore:
    """Create a document store for ``db_url`` without registering it globally."""
    if db_url.startswith('memory://'):
        return MemoryDocumentStore()
    if db_url.startswith(('postgresql://', 'postgres://')):
        from .postgres import PostgresDocumentStore
        return await PostgresDocumentStore.connect(db_url)
    raise ValueError(f"Unsupported database URL: {db_url}")


async def init_db(db_url: Optional[str] = None) -> DocumentStore:
    """Initialize the process-wide document store.

    Args:
        db_url: Optional database URL. If not provided, will use settings.

    Raises:
        ValueError: If database URL is not provided or unsupported
    """
    global _store

    if _store is not None:
        return _store

    # Import here to avoid circular imports
    from config import settings_conf

    url = db_url or settings_conf.get('db_url')
    if not url:
        raise ValueError("Database URL not provided")

    try:
        _store = await create_store(url)
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    logger.info(f"Document store initialized ({url.split('://', 1)[0]})")
    return _store


async def get_store() -> DocumentStore:
    """Get the document store, initializing it from settings if needed.

    Raises:
        RuntimeError: If the store could not be initialized
    """
    if not _store:
        await init_db()
    if not _store:
        raise RuntimeError("Failed to initialize document store")
    return _store


async def close() -> None:
    """Close the document store."""
    global _store

    if _store:
        await _store.close()
        _store = None


__all__ = [
    'init_db', 'get_store', 'close', 'create_store',
    'DocumentStore', 'DocumentChange', 'MemoryDocumentStore', 'matches',
    'DatabaseError', 'DatabaseSchemaError',
    'INSERT', 'UPDATE', 'DELETE'
]
