"""
Key-value store abstraction with optional Redis backing.

Backs run parameters, the assessment result cache and progress records.
- If REDIS_URL is set, use Redis.
- Otherwise fall back to an in-memory store (process-local, not for production).
"""

from __future__ import annotations

import json
import os
import threading
from datetime import datetime, timedelta
from typing import Any, Optional, Tuple
import logging

import redis

_CACHED_STORE: BaseCache | None = None
_CACHED_STORE_CONFIG: tuple[str | None, str, bool] | None = None


def _json_default(obj: Any):
    """Make cache payload JSON-serializable (best-effort)."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if isinstance(obj, datetime):
        return obj.isoformat()
    return str(obj)


def require_redis_enabled() -> bool:
    return os.getenv("REQUIRE_REDIS", "").strip().lower() in {"1", "true", "yes"}


def cache_prefix() -> str:
    return os.getenv("CACHE_PREFIX", "")


class BaseCache:
    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class InMemoryCache(BaseCache):
    def __init__(self):
        self.store: dict[str, Tuple[Any, Optional[datetime]]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            item = self.store.get(key)
            if not item:
                return None
            value, expires_at = item
            if expires_at and datetime.now() > expires_at:
                self.store.pop(key, None)
                return None
            return value

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        expires_at = (
            datetime.now() + timedelta(seconds=ttl_seconds) if ttl_seconds else None
        )
        # Round-trip through JSON so callers see the same shapes Redis returns.
        stored = json.loads(json.dumps(value, ensure_ascii=False, default=_json_default))
        with self._lock:
            self.store[key] = (stored, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self.store.pop(key, None)


class RedisCache(BaseCache):
    def __init__(self, url: str, prefix: str = ""):
        self.client = redis.Redis.from_url(url)
        self.prefix = prefix

    def _k(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[Any]:
        data = self.client.get(self._k(key))
        if data is None:
            return None
        try:
            return json.loads(data)
        except ValueError:
            return None

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        data = json.dumps(value, ensure_ascii=False, default=_json_default)
        self.client.set(self._k(key), data, ex=ttl_seconds)

    def delete(self, key: str) -> None:
        self.client.delete(self._k(key))


def get_redis_client() -> Optional[redis.Redis]:
    """Shared Redis client for locks and triggers; None means use in-process fallbacks."""
    redis_url = os.getenv("REDIS_URL")
    if not redis_url:
        if require_redis_enabled():
            raise RuntimeError("REQUIRE_REDIS=1 but REDIS_URL is not set")
        return None
    try:
        client = redis.Redis.from_url(redis_url)
        client.ping()
        return client
    except redis.RedisError as e:  # pragma: no cover
        if require_redis_enabled():
            raise RuntimeError(f"REQUIRE_REDIS=1 but Redis ping failed: {e}")
        logging.warning("Redis unavailable, using in-process fallback: %s", e)
        return None


def get_cache_store() -> BaseCache:
    global _CACHED_STORE, _CACHED_STORE_CONFIG
    redis_url = os.getenv("REDIS_URL")
    prefix = cache_prefix()
    require_redis = require_redis_enabled()
    config = (redis_url, prefix, require_redis)
    if _CACHED_STORE is not None and _CACHED_STORE_CONFIG == config:
        return _CACHED_STORE
    if redis_url:
        try:
            cache = RedisCache(redis_url, prefix=prefix)
            cache.client.ping()  # Verify connection immediately
            _CACHED_STORE = cache
            _CACHED_STORE_CONFIG = config
            return cache
        except redis.RedisError as e:
            if require_redis:
                raise RuntimeError(f"REQUIRE_REDIS=1 but Redis ping failed: {e}")
            logging.warning(
                "Redis configured but unavailable (ping failed), falling back to in-memory store: %s",
                e,
            )
    elif require_redis:
        raise RuntimeError("REQUIRE_REDIS=1 but REDIS_URL is not set")
    _CACHED_STORE = InMemoryCache()
    _CACHED_STORE_CONFIG = config
    return _CACHED_STORE
