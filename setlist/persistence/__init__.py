"""Persistence layer for setlist playlists and their contexts."""

from __future__ import annotations

import os
from typing import Optional, Union

from ..config import SetlistConfig, load_config
from .inmemory import InMemoryContextStore, InMemoryStore
from .repository import ContextStore, PluginRegistry, RunStore, StrategyCatalog
from .sqlite import SQLiteContextStore, SQLiteStore

Store = Union[InMemoryStore, SQLiteStore, "PostgresStore"]

_store_instance: Store | None = None
_context_store_instance: ContextStore | None = None


def get_store(
    database_url: Optional[str] = None, config: Optional[SetlistConfig] = None
) -> Store:
    """Factory function to obtain the relational store.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``SETLIST_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory store is returned.
    """

    global _store_instance
    if _store_instance is not None and database_url is None and config is None:
        return _store_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("SETLIST_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        _store_instance = InMemoryStore()
        return _store_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _store_instance = SQLiteStore(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        from .postgres import PostgresStore

        _store_instance = PostgresStore(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _store_instance


def get_context_store(
    backend: Optional[str] = None, config: Optional[SetlistConfig] = None
) -> ContextStore:
    """Factory function to obtain the run context store."""

    global _context_store_instance
    if _context_store_instance is not None and backend is None and config is None:
        return _context_store_instance

    config = config or load_config()
    backend = (
        backend
        or os.getenv("SETLIST_CONTEXT_STORE")
        or config.context_store.backend
    ).lower()

    if backend == "inmemory":
        _context_store_instance = InMemoryContextStore()
    elif backend == "sqlite":
        _context_store_instance = SQLiteContextStore(config.context_store.sqlite_path)
    elif backend == "redis":
        from .redis import RedisContextStore

        redis_conf = config.context_store.redis
        _context_store_instance = RedisContextStore(
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
        )
    else:
        raise ValueError(f"Unsupported context store backend: {backend}")

    return _context_store_instance


__all__ = [
    "ContextStore",
    "PluginRegistry",
    "RunStore",
    "StrategyCatalog",
    "Store",
    "InMemoryStore",
    "InMemoryContextStore",
    "SQLiteStore",
    "SQLiteContextStore",
    "get_store",
    "get_context_store",
]
