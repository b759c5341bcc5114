"""
Backend selection for callers of the project store.
"""

from __future__ import annotations

import logging

from projectstore.config import get_settings
from projectstore.db import InMemoryProjectStore, PostgresProjectStore, ProjectStore
from projectstore.schema import create_schema

logger = logging.getLogger(__name__)

_project_store: ProjectStore | None = None


def get_project_store() -> ProjectStore:
    """
    Return a singleton store so project/task state persists across requests.
    """
    global _project_store
    if _project_store:
        return _project_store

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        logger.info("Using in-memory project store")
        _project_store = InMemoryProjectStore()
        return _project_store

    store = PostgresProjectStore(
        settings.database_url,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_timeout=settings.pool_timeout,
        pool_recycle=settings.pool_recycle,
        statement_timeout_ms=settings.statement_timeout_ms,
    )
    if settings.auto_create_schema:
        create_schema(store.engine)
    logger.info("Using %s project store", store.engine.dialect.name)
    _project_store = store
    return _project_store


def reset_project_store() -> None:
    """Close and forget the cached store (useful in tests)."""
    global _project_store
    if _project_store is not None:
        _project_store.close()
    _project_store = None
