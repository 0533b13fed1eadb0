"""
Content-addressed cache of grading verdicts.

Key = sha256(reference_hash + "|" + response_hash). Identical reference and
response content always hit the same entry regardless of who submitted it.
Reads and writes are best-effort: a storage fault degrades to a cache miss.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from assessment_agent.utils.cache import BaseCache, get_cache_store
from assessment_agent.utils.hashing import generate_hash
from assessment_agent.utils.observability import log_event
from assessment_agent.utils.settings import get_settings

logger = logging.getLogger(__name__)

RESULT_CACHE_NAMESPACE = "assess:"


class ResultCache:
    def __init__(self, store: Optional[BaseCache] = None, *, ttl_seconds: Optional[int] = None):
        self._store = store
        self.ttl_seconds = int(ttl_seconds or get_settings().result_cache_ttl_seconds)

    @property
    def store(self) -> BaseCache:
        if self._store is None:
            self._store = get_cache_store()
        return self._store

    @staticmethod
    def key(reference_hash: Optional[str], response_hash: Optional[str]) -> Optional[str]:
        if not reference_hash or not response_hash:
            return None
        return generate_hash(f"{reference_hash}|{response_hash}")

    def get(self, reference_hash: Optional[str], response_hash: Optional[str]) -> Optional[Any]:
        key = self.key(reference_hash, response_hash)
        if key is None:
            return None
        try:
            return self.store.get(RESULT_CACHE_NAMESPACE + key)
        except Exception as e:
            log_event(logger, "result_cache_get_failed", level="warning", key=key, error=str(e))
            return None

    def put(self, reference_hash: Optional[str], response_hash: Optional[str], value: Any) -> None:
        key = self.key(reference_hash, response_hash)
        if key is None:
            return
        try:
            self.store.set(RESULT_CACHE_NAMESPACE + key, value, ttl_seconds=self.ttl_seconds)
        except Exception as e:
            log_event(logger, "result_cache_put_failed", level="warning", key=key, error=str(e))
