"""listingflow persistence module.

- Pydantic entity records (camelCase JSON)
- Key/value store backends (memory, Redis, REST)
- EntityStore: typed access layer with secondary indexes and audit logs
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from listingflow.db.kv import (
    KeyValueStore,
    MemoryKeyValueStore,
    RedisKeyValueStore,
    RestKeyValueStore,
    StoreError,
    create_kv_store,
)
from listingflow.db.repository import EntityStore

if TYPE_CHECKING:
    from listingflow.core.config import Settings


def create_entity_store(settings: Settings, kv: KeyValueStore | None = None) -> EntityStore:
    """Build the entity store for the configured backend.

    Args:
        settings: Application settings.
        kv: Explicit backend; when omitted one is built from ``settings.store``.
    """
    backend = kv if kv is not None else create_kv_store(settings.store)
    return EntityStore(
        backend,
        key_prefix=settings.store.key_prefix,
        audit=settings.audit,
    )


__all__ = [
    "EntityStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "RedisKeyValueStore",
    "RestKeyValueStore",
    "StoreError",
    "create_entity_store",
    "create_kv_store",
]
