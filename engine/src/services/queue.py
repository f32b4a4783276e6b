"""
Redis queue service for pipeline runs.

The gateway pushes run requests; workers pop them and mirror execution status
back into a hash so any process can read it.
"""

import redis.asyncio as redis
import json
from typing import Dict, Any, List, Optional
from datetime import datetime

from engine.src.config import get_settings

settings = get_settings()

RUN_QUEUE = "pipewright:runs"
RUN_STATUS = "pipewright:status"
CANCEL_REQUESTS = "pipewright:cancel"

async def get_redis_client() -> redis.Redis:
    """Get async Redis client."""
    return redis.from_url(settings.redis_url, decode_responses=True)

async def enqueue_run(
    pipeline_id: str,
    variables: Optional[Dict[str, Any]] = None,
    triggered_by: str = "user",
) -> Dict[str, Any]:
    """
    Add a pipeline run request to the queue.
    Secrets are never queued; workers resolve them from their own vault.
    """
    client = await get_redis_client()

    job = {
        "pipeline_id": pipeline_id,
        "variables": variables or {},
        "triggered_by": triggered_by,
        "queued_at": datetime.utcnow().isoformat(),
    }

    try:
        await client.lpush(RUN_QUEUE, json.dumps(job))
    finally:
        await client.close()

    return job

async def dequeue_run(timeout: int = 5) -> Optional[Dict[str, Any]]:
    """
    Get next run request from queue.
    Blocks for `timeout` seconds if queue is empty.
    """
    client = await get_redis_client()

    try:
        result = await client.brpop(RUN_QUEUE, timeout=timeout)
        if result:
            _, job_data = result
            return json.loads(job_data)
        return None
    finally:
        await client.close()

async def update_run_status(execution_id: str, status: str):
    """Update execution status in Redis."""
    client = await get_redis_client()

    try:
        await client.hset(RUN_STATUS, execution_id, status)
    finally:
        await client.close()

async def get_run_status(execution_id: str) -> Optional[str]:
    """Get execution status from Redis."""
    client = await get_redis_client()

    try:
        return await client.hget(RUN_STATUS, execution_id)
    finally:
        await client.close()

async def get_queue_length() -> int:
    """Get number of run requests in queue."""
    client = await get_redis_client()

    try:
        return await client.llen(RUN_QUEUE)
    finally:
        await client.close()

async def request_cancel(execution_id: str):
    """Ask whichever worker owns the execution to cancel it."""
    client = await get_redis_client()

    try:
        await client.sadd(CANCEL_REQUESTS, execution_id)
    finally:
        await client.close()

async def pop_cancel_requests(execution_ids: List[str]) -> List[str]:
    """Claim pending cancel requests for the given executions."""
    if not execution_ids:
        return []

    client = await get_redis_client()

    try:
        claimed = []
        for execution_id in execution_ids:
            if await client.srem(CANCEL_REQUESTS, execution_id):
                claimed.append(execution_id)
        return claimed
    finally:
        await client.close()
