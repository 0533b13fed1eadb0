from __future__ import annotations

import logging
import threading
from typing import Dict, Optional

import redis
from redis.exceptions import LockError

from assessment_agent.utils.cache import cache_prefix, get_redis_client
from assessment_agent.utils.observability import log_event
from assessment_agent.utils.settings import get_settings

logger = logging.getLogger(__name__)

_LOCAL_LOCKS: Dict[str, threading.Lock] = {}
_LOCAL_LOCKS_GUARD = threading.Lock()


def _local_lock(name: str) -> threading.Lock:
    with _LOCAL_LOCKS_GUARD:
        return _LOCAL_LOCKS.setdefault(name, threading.Lock())


class DocumentLock:
    """
    Mutual exclusion for one document scope.

    Redis lock when Redis is configured (shared by API and worker processes),
    otherwise a process-local threading.Lock.
    """

    def __init__(
        self,
        scope: str,
        *,
        client: Optional["redis.Redis"] = None,
        ttl_seconds: Optional[int] = None,
        use_redis: bool = True,
    ):
        settings = get_settings()
        self.scope = scope
        self.name = f"{cache_prefix()}lock:document:{scope}"
        self.ttl_seconds = int(ttl_seconds or settings.lock_ttl_seconds)
        if client is None and use_redis:
            client = get_redis_client()
        self._client = client
        self._redis_lock = None
        self._held = False

    def try_lock(self, wait_seconds: float) -> bool:
        # A failed attempt must not touch the state of the current holder.
        wait = max(0.0, float(wait_seconds))
        if self._client is not None:
            candidate = self._client.lock(self.name, timeout=self.ttl_seconds, blocking_timeout=wait)
            if not candidate.acquire(blocking=True):
                return False
            self._redis_lock = candidate
        elif not _local_lock(self.name).acquire(timeout=wait):
            return False
        self._held = True
        return True

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        if self._redis_lock is not None:
            try:
                self._redis_lock.release()
            except LockError as e:
                # Expired or taken over; nothing left to release.
                log_event(logger, "lock_release_lost", level="warning", lock=self.name, error=str(e))
            finally:
                self._redis_lock = None
            return
        _local_lock(self.name).release()
