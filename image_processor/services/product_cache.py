"""Redis client wrapper for the cached product view."""

from __future__ import annotations

from typing import Protocol

import redis

from image_processor.core.config import Settings, settings
from image_processor.core.errors import CacheError

PRODUCT_CACHE_PREFIX = "product:"


def product_cache_key(product_id: int) -> str:
    """Return the key the product API caches a serialized product under."""

    return f"{PRODUCT_CACHE_PREFIX}{product_id}"


class ProductCache(Protocol):
    def delete(self, key: str) -> None: ...


class RedisProductCache:
    """Deletes cached product entries so the next read repopulates them."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "RedisProductCache":
        return cls(redis.Redis.from_url(config.redis_url))

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.RedisError as exc:
            raise CacheError(f"Failed to delete cache key {key}: {exc}") from exc
