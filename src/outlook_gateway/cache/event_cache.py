"""Keyed expiring cache backing notification reconciliation.

Keys follow ``{account_name}:{change_type}:{event_id}``. Stores expose plain
get/put plus ``add`` (set-if-absent). Every store failure is raised as
``CacheUnavailable`` so callers can decide how to degrade.
"""

import time
from typing import Callable, Dict, Optional, Protocol, Tuple, Union

import redis.asyncio as redis
from redis.asyncio import Redis

from outlook_gateway.config import Settings
from outlook_gateway.utils.errors import CacheUnavailable
from outlook_gateway.utils.logging import get_logger

logger = get_logger("cache")


class _DefaultTTL:
    """Sentinel meaning "use the store's default debounce TTL"."""

    _instance: Optional["_DefaultTTL"] = None

    def __new__(cls) -> "_DefaultTTL":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DEFAULT_TTL"


DEFAULT_TTL = _DefaultTTL()

# DEFAULT_TTL -> store default, None -> never expires, int -> seconds
TTL = Union[_DefaultTTL, int, None]


def event_cache_key(account_name: str, change_type: str, event_id: str) -> str:
    """Build the cache key for one (account, change type, resource id)."""
    return f"{account_name}:{change_type}:{event_id}"


class EventCache(Protocol):
    """Interface every cache store implements."""

    default_ttl: int

    async def get(self, key: str) -> Optional[str]:
        ...

    async def put(self, key: str, payload: str, ttl: TTL = DEFAULT_TTL) -> None:
        ...

    async def add(self, key: str, payload: str, ttl: TTL = DEFAULT_TTL) -> bool:
        ...

    async def ping(self) -> bool:
        ...

    async def close(self) -> None:
        ...


def _resolve_ttl(ttl: TTL, default_ttl: int) -> Optional[int]:
    if isinstance(ttl, _DefaultTTL):
        return default_ttl
    if ttl is None:
        return None
    if ttl <= 0:
        raise ValueError("ttl must be a positive number of seconds, None or DEFAULT_TTL")
    return int(ttl)


class RedisEventCache:
    """Event cache stored in Redis with per-key expiry."""

    def __init__(self, client: Redis, default_ttl: int = 120):
        self._client = client
        self.default_ttl = default_ttl

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisEventCache":
        """Create a cache backed by a pooled Redis client built from settings."""
        client = redis.from_url(
            settings.redis.url,
            password=settings.redis.password,
            decode_responses=settings.redis.decode_responses,
            socket_timeout=settings.redis.socket_timeout,
            socket_connect_timeout=settings.redis.socket_connect_timeout,
        )
        return cls(client, default_ttl=settings.debounce_ttl_seconds)

    async def get(self, key: str) -> Optional[str]:
        try:
            value = await self._client.get(key)
        except Exception as e:
            raise CacheUnavailable(
                f"Redis get failed: {e}", details={"key": key}
            ) from e
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    async def put(self, key: str, payload: str, ttl: TTL = DEFAULT_TTL) -> None:
        expire = _resolve_ttl(ttl, self.default_ttl)
        try:
            await self._client.set(key, payload, ex=expire)
        except Exception as e:
            raise CacheUnavailable(
                f"Redis set failed: {e}", details={"key": key}
            ) from e

    async def add(self, key: str, payload: str, ttl: TTL = DEFAULT_TTL) -> bool:
        expire = _resolve_ttl(ttl, self.default_ttl)
        try:
            created = await self._client.set(key, payload, ex=expire, nx=True)
        except Exception as e:
            raise CacheUnavailable(
                f"Redis conditional set failed: {e}", details={"key": key}
            ) from e
        return bool(created)

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except Exception as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        await self._client.aclose()


class InMemoryEventCache:
    """Process-local event cache for development and tests.

    ``clock`` returns seconds and defaults to ``time.monotonic``; tests pass a
    controllable clock to step past the debounce window.
    """

    def __init__(self, default_ttl: int = 120, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[str, Optional[float]]] = {}

    def _live(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        payload, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._entries[key]
            return None
        return payload

    def _store(self, key: str, payload: str, ttl: TTL) -> None:
        expire = _resolve_ttl(ttl, self.default_ttl)
        expires_at = None if expire is None else self._clock() + expire
        self._entries[key] = (payload, expires_at)

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def put(self, key: str, payload: str, ttl: TTL = DEFAULT_TTL) -> None:
        self._store(key, payload, ttl)

    async def add(self, key: str, payload: str, ttl: TTL = DEFAULT_TTL) -> bool:
        if self._live(key) is not None:
            return False
        self._store(key, payload, ttl)
        return True

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._entries.clear()


def build_event_cache(settings: Settings) -> EventCache:
    """Create the configured cache store."""
    if settings.cache_backend == "memory":
        logger.info("Using in-memory event cache")
        return InMemoryEventCache(default_ttl=settings.debounce_ttl_seconds)
    logger.info("Using Redis event cache")
    return RedisEventCache.from_settings(settings)
