"""
One-shot continuation triggers.

A run is split into schedule -> run because the host kills any single
execution after a fixed wall-clock ceiling. `ContinuationScheduler` asks a
TriggerHost for a one-shot trigger bound to an entry point name; the run
worker later claims due triggers and invokes the entry point.

Hosts cap the number of live triggers. Hitting the cap is reported as an
explicit TriggerStatus.QUOTA_EXHAUSTED, never as an exception. The scheduler
then purges triggers for the entry point and retries exactly once.
"""

from __future__ import annotations

import logging
import os
import threading
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

import redis

from assessment_agent.utils.cache import cache_prefix, get_redis_client
from assessment_agent.utils.errors import TriggerQuotaExceededError
from assessment_agent.utils.observability import log_event
from assessment_agent.utils.settings import get_settings

logger = logging.getLogger(__name__)


class TriggerStatus(str, Enum):
    CREATED = "created"
    QUOTA_EXHAUSTED = "quota_exhausted"


@dataclass(frozen=True)
class TriggerCreation:
    status: TriggerStatus
    trigger_id: Optional[str] = None


@dataclass(frozen=True)
class DueTrigger:
    trigger_id: str
    entry_point: str
    run_at: float


class TriggerHost:
    def create_one_shot(self, entry_point: str, run_at: float) -> TriggerCreation:
        raise NotImplementedError

    def remove_all(self, entry_point: str) -> int:
        raise NotImplementedError

    def remove_by_id(self, trigger_id: str) -> bool:
        raise NotImplementedError

    def pop_due(self, now: Optional[float] = None) -> List[DueTrigger]:
        """Claim every trigger due at `now`; each trigger is handed out once."""
        raise NotImplementedError


def _new_trigger_id() -> str:
    return f"trg_{uuid.uuid4().hex[:16]}"


class InMemoryTriggerHost(TriggerHost):
    def __init__(self, max_triggers: int = 20):
        self.max_triggers = int(max_triggers)
        # trigger_id -> (entry_point, run_at, claimed)
        self._triggers: Dict[str, tuple[str, float, bool]] = {}
        self._lock = threading.Lock()

    def create_one_shot(self, entry_point: str, run_at: float) -> TriggerCreation:
        with self._lock:
            if len(self._triggers) >= self.max_triggers:
                return TriggerCreation(TriggerStatus.QUOTA_EXHAUSTED)
            trigger_id = _new_trigger_id()
            self._triggers[trigger_id] = (entry_point, float(run_at), False)
        return TriggerCreation(TriggerStatus.CREATED, trigger_id)

    def remove_all(self, entry_point: str) -> int:
        with self._lock:
            ids = [tid for tid, (ep, _, _) in self._triggers.items() if ep == entry_point]
            for tid in ids:
                del self._triggers[tid]
        return len(ids)

    def remove_by_id(self, trigger_id: str) -> bool:
        with self._lock:
            return self._triggers.pop(trigger_id, None) is not None

    def pop_due(self, now: Optional[float] = None) -> List[DueTrigger]:
        now = time.time() if now is None else now
        due: List[DueTrigger] = []
        with self._lock:
            for tid, (ep, run_at, claimed) in sorted(self._triggers.items(), key=lambda kv: kv[1][1]):
                if claimed or run_at > now:
                    continue
                # Fired triggers keep counting against the quota until removed.
                self._triggers[tid] = (ep, run_at, True)
                due.append(DueTrigger(tid, ep, run_at))
        return due


class RedisTriggerHost(TriggerHost):
    """
    Keys:
    - {prefix}triggers:due    sorted set, member = trigger id, score = due epoch
    - {prefix}triggers:entry  hash, trigger id -> entry point
    The hash is the set of live triggers (quota); the zset holds unfired ones.
    """

    def __init__(self, client: "redis.Redis", *, max_triggers: int = 20, prefix: str = ""):
        self.client = client
        self.max_triggers = int(max_triggers)
        self.due_key = f"{prefix}triggers:due"
        self.entry_key = f"{prefix}triggers:entry"

    @staticmethod
    def _s(value) -> str:
        return value.decode("utf-8") if isinstance(value, (bytes, bytearray)) else str(value)

    def create_one_shot(self, entry_point: str, run_at: float) -> TriggerCreation:
        if int(self.client.hlen(self.entry_key)) >= self.max_triggers:
            return TriggerCreation(TriggerStatus.QUOTA_EXHAUSTED)
        trigger_id = _new_trigger_id()
        pipe = self.client.pipeline()
        pipe.hset(self.entry_key, trigger_id, entry_point)
        pipe.zadd(self.due_key, {trigger_id: float(run_at)})
        pipe.execute()
        return TriggerCreation(TriggerStatus.CREATED, trigger_id)

    def remove_all(self, entry_point: str) -> int:
        entries = self.client.hgetall(self.entry_key) or {}
        ids = [self._s(tid) for tid, ep in entries.items() if self._s(ep) == entry_point]
        if not ids:
            return 0
        pipe = self.client.pipeline()
        pipe.zrem(self.due_key, *ids)
        pipe.hdel(self.entry_key, *ids)
        _, removed = pipe.execute()
        return int(removed)

    def remove_by_id(self, trigger_id: str) -> bool:
        pipe = self.client.pipeline()
        pipe.zrem(self.due_key, trigger_id)
        pipe.hdel(self.entry_key, trigger_id)
        zrem_count, hdel_count = pipe.execute()
        return bool(zrem_count or hdel_count)

    def pop_due(self, now: Optional[float] = None) -> List[DueTrigger]:
        now = time.time() if now is None else now
        due: List[DueTrigger] = []
        for member, score in self.client.zrangebyscore(self.due_key, "-inf", now, withscores=True):
            tid = self._s(member)
            # ZREM succeeds for exactly one worker.
            if int(self.client.zrem(self.due_key, tid)) != 1:
                continue
            ep = self.client.hget(self.entry_key, tid)
            if ep is None:
                continue
            due.append(DueTrigger(tid, self._s(ep), float(score)))
        return due


_FALLBACK_HOST: Optional[InMemoryTriggerHost] = None
_FALLBACK_LOCK = threading.Lock()


def get_trigger_host() -> TriggerHost:
    """Redis-backed when REDIS_URL is configured; otherwise a process-wide in-memory host."""
    global _FALLBACK_HOST
    settings = get_settings()
    client = get_redis_client()
    if client is not None:
        return RedisTriggerHost(client, max_triggers=settings.max_triggers, prefix=cache_prefix())
    with _FALLBACK_LOCK:
        if _FALLBACK_HOST is None:
            if os.getenv("REDIS_URL"):
                logger.warning("Trigger host falling back to in-memory store")
            _FALLBACK_HOST = InMemoryTriggerHost(max_triggers=settings.max_triggers)
        return _FALLBACK_HOST


class ContinuationScheduler:
    def __init__(self, host: TriggerHost, *, delay_seconds: Optional[float] = None, clock=time.time):
        self.host = host
        self.delay_seconds = float(
            get_settings().trigger_delay_seconds if delay_seconds is None else delay_seconds
        )
        self._clock = clock

    def create_one_shot(self, entry_point: str, at: Optional[float] = None) -> str:
        run_at = self._clock() + self.delay_seconds if at is None else float(at)
        created = self.host.create_one_shot(entry_point, run_at)
        if created.status == TriggerStatus.QUOTA_EXHAUSTED:
            removed = self.host.remove_all(entry_point)
            log_event(
                logger,
                "trigger_quota_exhausted",
                level="warning",
                entry_point=entry_point,
                removed=removed,
            )
            created = self.host.create_one_shot(entry_point, run_at)
            if created.status == TriggerStatus.QUOTA_EXHAUSTED:
                raise TriggerQuotaExceededError(
                    f"Trigger quota still exhausted after removing {removed} trigger(s) for {entry_point}"
                )
        log_event(logger, "trigger_created", entry_point=entry_point, trigger_id=created.trigger_id, run_at=run_at)
        return str(created.trigger_id)

    def remove_all(self, entry_point: str) -> int:
        removed = self.host.remove_all(entry_point)
        log_event(logger, "triggers_removed", entry_point=entry_point, removed=removed)
        return removed

    def remove_by_id(self, trigger_id: str) -> bool:
        removed = self.host.remove_by_id(trigger_id)
        if not removed:
            log_event(logger, "trigger_not_found", level="warning", trigger_id=trigger_id)
        return removed
