"""Keyed expiring cache stores."""

from outlook_gateway.cache.event_cache import (
    DEFAULT_TTL,
    EventCache,
    InMemoryEventCache,
    RedisEventCache,
    build_event_cache,
    event_cache_key,
)

__all__ = [
    "DEFAULT_TTL",
    "EventCache",
    "InMemoryEventCache",
    "RedisEventCache",
    "build_event_cache",
    "event_cache_key",
]
