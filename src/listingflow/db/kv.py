"""Key/value store backends.

All persistence goes through four primitives: get, set (with optional
TTL), incr and expire. Values are strings; callers serialize JSON
themselves. The store is atomic per key and offers no multi-key
transactions.

Backends:
- RestKeyValueStore: REST key/value endpoint over httpx
  (``/get/<key>``, ``/set/<key>``, ``/incr/<key>``, ``/expire/<key>/<s>``)
- RedisKeyValueStore: Redis via redis.asyncio with a pooled connection
- MemoryKeyValueStore: process-local dictionaries, for local runs and tests

Example:
    from listingflow.db.kv import create_kv_store
    from listingflow.core.settings import get_settings

    store = create_kv_store(get_settings().store)
    await store.set("lf:job:job_123", payload)
    raw = await store.get("lf:job:job_123")
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

if TYPE_CHECKING:
    from listingflow.core.config import StoreSettings

logger = logging.getLogger(__name__)

DEFAULT_REDIS_MAX_CONNECTIONS = 20
DEFAULT_REDIS_HEALTH_CHECK_SECONDS = 30


class StoreError(Exception):
    """Base exception for key/value store operations.

    Attributes:
        message: Human-readable error description.
        key: The key involved (if applicable).
        operation: The operation that failed.
    """

    def __init__(
        self,
        message: str,
        *,
        key: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.message = message
        self.key = key
        self.operation = operation
        super().__init__(message)


class KeyValueStore(ABC):
    """Contract the workflow engine needs from its persistence substrate."""

    backend_name: str = "abstract"

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value stored at key, or None if absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        """Store value at key, replacing any previous value and TTL."""

    @abstractmethod
    async def incr(self, key: str) -> int:
        """Atomically increment the integer at key (missing counts as 0)."""

    @abstractmethod
    async def expire(self, key: str, seconds: int) -> bool:
        """Set a TTL on an existing key. Returns False if the key is absent."""

    async def close(self) -> None:  # noqa: B027 - optional hook
        """Release connections held by the backend."""

    async def health_check(self, key: str = "health:check") -> dict[str, Any]:
        """Round-trip a marker key through the store."""
        await self.set(key, "ok", ttl_seconds=30)
        healthy = await self.get(key) == "ok"
        return {"healthy": healthy, "backend": self.backend_name}


class MemoryKeyValueStore(KeyValueStore):
    """In-process store with TTL support.

    State lives on the instance, so every app (and every test) gets its
    own isolated store.
    """

    backend_name = "memory"

    def __init__(self) -> None:
        self._values: dict[str, str] = {}
        self._expirations: dict[str, float] = {}

    def _evict_if_expired(self, key: str) -> None:
        expires_at = self._expirations.get(key)
        if expires_at is not None and time.monotonic() >= expires_at:
            self._expirations.pop(key, None)
            self._values.pop(key, None)

    async def get(self, key: str) -> str | None:
        self._evict_if_expired(key)
        return self._values.get(key)

    async def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        self._values[key] = value
        if ttl_seconds:
            self._expirations[key] = time.monotonic() + ttl_seconds
        else:
            self._expirations.pop(key, None)

    async def incr(self, key: str) -> int:
        self._evict_if_expired(key)
        current = self._values.get(key, "0")
        try:
            value = int(current) + 1
        except ValueError as e:
            raise StoreError(
                "Value is not an integer", key=key, operation="incr"
            ) from e
        self._values[key] = str(value)
        return value

    async def expire(self, key: str, seconds: int) -> bool:
        self._evict_if_expired(key)
        if key not in self._values:
            return False
        self._expirations[key] = time.monotonic() + seconds
        return True

    def __len__(self) -> int:
        return len(self._values)


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed store using a pooled asyncio client."""

    backend_name = "redis"

    def __init__(self, url: str, *, timeout: float = 10.0) -> None:
        import redis.asyncio as redis

        pool = redis.ConnectionPool.from_url(
            url,
            max_connections=DEFAULT_REDIS_MAX_CONNECTIONS,
            socket_connect_timeout=timeout,
            socket_timeout=timeout,
            health_check_interval=DEFAULT_REDIS_HEALTH_CHECK_SECONDS,
            decode_responses=True,
        )
        self._client = redis.Redis(connection_pool=pool)
        self._redis_error = redis.RedisError

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get(key)
        except self._redis_error as e:
            raise StoreError(f"Redis get failed: {e}", key=key, operation="get") from e

    async def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        try:
            await self._client.set(key, value, ex=ttl_seconds or None)
        except self._redis_error as e:
            raise StoreError(f"Redis set failed: {e}", key=key, operation="set") from e

    async def incr(self, key: str) -> int:
        try:
            return int(await self._client.incr(key))
        except self._redis_error as e:
            raise StoreError(f"Redis incr failed: {e}", key=key, operation="incr") from e

    async def expire(self, key: str, seconds: int) -> bool:
        try:
            return bool(await self._client.expire(key, seconds))
        except self._redis_error as e:
            raise StoreError(f"Redis expire failed: {e}", key=key, operation="expire") from e

    async def close(self) -> None:
        await self._client.aclose()


def _decode_rest_result(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, int | float):
        return str(value)
    if isinstance(value, list):
        return str(value[0]) if value else None
    return None


class RestKeyValueStore(KeyValueStore):
    """Store backed by a REST key/value endpoint.

    Each primitive is one HTTP call authenticated with a bearer token; the
    endpoint answers ``{"result": ...}``.
    """

    backend_name = "rest"

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    async def _call(
        self,
        operation: str,
        key: str,
        path: str,
        *,
        content: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        try:
            if content is None:
                response = await self._client.get(path, params=params)
            else:
                response = await self._client.post(path, content=content, params=params)
        except httpx.HTTPError as e:
            raise StoreError(
                f"KV {operation} request failed: {e}", key=key, operation=operation
            ) from e

        if response.status_code >= 400:
            raise StoreError(
                f"KV {operation} failed: {response.status_code}",
                key=key,
                operation=operation,
            )
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        return payload.get("result") if isinstance(payload, dict) else None

    async def get(self, key: str) -> str | None:
        result = await self._call("get", key, f"/get/{quote(key, safe='')}")
        return _decode_rest_result(result)

    async def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        params = {"EX": ttl_seconds} if ttl_seconds else None
        await self._call(
            "set", key, f"/set/{quote(key, safe='')}", content=value, params=params
        )

    async def incr(self, key: str) -> int:
        result = await self._call("incr", key, f"/incr/{quote(key, safe='')}")
        try:
            return int(result)
        except (TypeError, ValueError) as e:
            raise StoreError(
                "KV incr returned a non-integer", key=key, operation="incr"
            ) from e

    async def expire(self, key: str, seconds: int) -> bool:
        result = await self._call(
            "expire", key, f"/expire/{quote(key, safe='')}/{int(seconds)}"
        )
        return bool(result)

    async def close(self) -> None:
        await self._client.aclose()


def create_kv_store(settings: StoreSettings) -> KeyValueStore:
    """Build the backend implied by the store settings."""
    from listingflow.core.config import StoreBackend

    backend = settings.backend
    if backend == StoreBackend.REST:
        logger.info("Using REST key/value store at %s", settings.rest_url)
        return RestKeyValueStore(
            settings.rest_url or "",
            settings.rest_token.get_secret_value() if settings.rest_token else "",
            timeout=settings.timeout,
        )
    if backend == StoreBackend.REDIS:
        logger.info("Using Redis key/value store")
        return RedisKeyValueStore(settings.redis_url or "", timeout=settings.timeout)

    logger.warning("No external key/value store configured, using in-memory store")
    return MemoryKeyValueStore()
