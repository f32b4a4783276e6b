"""Tests for the Redis run queue."""

import json

import pytest
from engine.src.services import queue

class FakeRedis:
    """In-memory stand-in for the handful of Redis commands the queue uses."""

    def __init__(self):
        self.lists = {}
        self.hashes = {}
        self.sets = {}

    async def lpush(self, key, value):
        self.lists.setdefault(key, []).insert(0, value)

    async def brpop(self, key, timeout=0):
        items = self.lists.get(key)
        if not items:
            return None
        return key, items.pop()

    async def llen(self, key):
        return len(self.lists.get(key, []))

    async def hset(self, key, field, value):
        self.hashes.setdefault(key, {})[field] = value

    async def hget(self, key, field):
        return self.hashes.get(key, {}).get(field)

    async def sadd(self, key, member):
        self.sets.setdefault(key, set()).add(member)

    async def srem(self, key, member):
        members = self.sets.get(key, set())
        if member in members:
            members.remove(member)
            return 1
        return 0

    async def close(self):
        pass

@pytest.fixture
def fake_redis(monkeypatch):
    fake = FakeRedis()

    async def get_client():
        return fake

    monkeypatch.setattr(queue, "get_redis_client", get_client)
    return fake

@pytest.mark.asyncio
async def test_enqueue_and_dequeue_in_order(fake_redis):
    await queue.enqueue_run("p1", {"env": "prod"}, triggered_by="api")
    await queue.enqueue_run("p2")

    assert await queue.get_queue_length() == 2

    first = await queue.dequeue_run()
    second = await queue.dequeue_run()

    assert first["pipeline_id"] == "p1"
    assert first["variables"] == {"env": "prod"}
    assert first["triggered_by"] == "api"
    assert second["pipeline_id"] == "p2"
    assert await queue.dequeue_run() is None

@pytest.mark.asyncio
async def test_queued_job_has_no_secrets(fake_redis):
    await queue.enqueue_run("p1", {"env": "prod"})

    job = json.loads(fake_redis.lists[queue.RUN_QUEUE][0])

    assert set(job) == {"pipeline_id", "variables", "triggered_by", "queued_at"}

@pytest.mark.asyncio
async def test_run_status(fake_redis):
    assert await queue.get_run_status("e1") is None

    await queue.update_run_status("e1", "running")

    assert await queue.get_run_status("e1") == "running"

@pytest.mark.asyncio
async def test_cancel_requests_are_claimed_once(fake_redis):
    await queue.request_cancel("e1")
    await queue.request_cancel("e3")

    assert await queue.pop_cancel_requests(["e1", "e2"]) == ["e1"]
    assert await queue.pop_cancel_requests(["e1", "e2"]) == []
    assert await queue.pop_cancel_requests([]) == []
    assert fake_redis.sets[queue.CANCEL_REQUESTS] == {"e3"}
