"""Tests for the queue worker."""

import pytest
from engine.src import worker
from engine.src.models.execution import ExecutionStatus, PipelineExecution
from engine.src.models.pipeline import Pipeline
from engine.src.services.store import ExecutionStore

@pytest.fixture
def redis_status(monkeypatch):
    updates = []

    async def update_run_status(execution_id, status):
        updates.append((execution_id, status))

    monkeypatch.setattr(worker, "update_run_status", update_run_status)
    return updates

@pytest.fixture
def store(orchestrator):
    store = ExecutionStore("sqlite://")
    store.init_db()
    orchestrator.store = store
    orchestrator.monitor.store = store
    return store

@pytest.mark.asyncio
async def test_queued_run_is_executed_and_mirrored(orchestrator, store, redis_status):
    pipeline = Pipeline.model_validate({
        "name": "queued",
        "steps": [{"id": "a", "block_id": "shell", "config": {"command": "true"}}],
    })
    store.save_pipeline(pipeline)
    active = set()
    mirror = worker.StatusMirror()

    execution_id = await worker.start_run(
        orchestrator,
        {"pipeline_id": pipeline.id, "variables": {}, "triggered_by": "queue"},
        mirror,
    )
    active.add(execution_id)
    await worker.finish_run(orchestrator, execution_id, active, mirror)

    statuses = [status for eid, status in redis_status if eid == execution_id]
    assert "pending" in statuses
    assert "running" in statuses
    assert statuses[-1] == "success"
    assert active == set()
    assert not orchestrator.monitor.is_registered(execution_id)
    assert store.load_execution(execution_id).status == ExecutionStatus.SUCCESS

@pytest.mark.asyncio
async def test_unknown_pipeline_is_rejected(orchestrator, store, redis_status):
    execution_id = await worker.start_run(
        orchestrator,
        {"pipeline_id": "missing"},
        worker.StatusMirror(),
    )

    assert execution_id is None
    assert redis_status == []

@pytest.mark.asyncio
async def test_status_mirror_skips_repeats(orchestrator, redis_status):
    mirror = worker.StatusMirror()
    execution = PipelineExecution(pipeline_id="p1")

    mirror(execution)
    mirror(execution)
    execution.status = ExecutionStatus.RUNNING
    mirror(execution)
    for task in list(mirror._pending):
        await task

    assert [status for _, status in redis_status] == ["pending", "running"]
