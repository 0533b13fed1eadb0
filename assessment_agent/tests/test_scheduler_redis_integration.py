from __future__ import annotations

import os
import uuid

import pytest

from assessment_agent.services.locks import DocumentLock
from assessment_agent.services.scheduler import (
    ContinuationScheduler,
    RedisTriggerHost,
    TriggerStatus,
)


pytestmark = pytest.mark.integration


def _redis_client():
    import redis

    url = str(os.getenv("REDIS_URL") or "").strip()
    if not url:
        return None
    try:
        client = redis.Redis.from_url(url)
        client.ping()
        return client
    except redis.RedisError:
        return None


def test_redis_trigger_host_quota_claim_and_purge() -> None:
    client = _redis_client()
    if client is None:
        pytest.skip("Redis unavailable (set REDIS_URL to run this integration test)")

    prefix = f"test:{uuid.uuid4().hex[:8]}:"
    host = RedisTriggerHost(client, max_triggers=2, prefix=prefix)
    try:
        scheduler = ContinuationScheduler(host, delay_seconds=0, clock=lambda: 100.0)
        first = scheduler.create_one_shot("entry")
        host.create_one_shot("other", 1000.0)
        assert host.create_one_shot("entry", 100.0).status == TriggerStatus.QUOTA_EXHAUSTED

        # Quota hit -> our own trigger purged, retry succeeds.
        second = scheduler.create_one_shot("entry")
        assert second != first

        due = host.pop_due(now=150.0)
        assert [(d.trigger_id, d.entry_point) for d in due] == [(second, "entry")]
        assert host.pop_due(now=150.0) == []

        assert host.remove_by_id(second) is True
        assert host.remove_by_id(second) is False
        assert host.remove_all("other") == 1
    finally:
        client.delete(host.due_key, host.entry_key)


def test_redis_document_lock_is_exclusive(monkeypatch) -> None:
    client = _redis_client()
    if client is None:
        pytest.skip("Redis unavailable (set REDIS_URL to run this integration test)")

    monkeypatch.setenv("CACHE_PREFIX", f"test:{uuid.uuid4().hex[:8]}:")
    first = DocumentLock("scope", client=client, ttl_seconds=30)
    second = DocumentLock("scope", client=client, ttl_seconds=30)
    assert first.try_lock(0) is True
    try:
        assert second.try_lock(0.1) is False
    finally:
        first.release()
    assert second.try_lock(0) is True
    second.release()
