"""
Queue worker - pulls run requests from Redis and executes them.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from engine.src.config import get_settings
from engine.src.errors import PipelineEngineError
from engine.src.models.execution import PipelineExecution
from engine.src.services.blocks import BlockLibrary
from engine.src.services.monitor import ExecutionMonitor
from engine.src.services.orchestrator import PipelineOrchestrator
from engine.src.services.queue import dequeue_run, pop_cancel_requests, update_run_status
from engine.src.services.store import ExecutionStore

logger = logging.getLogger(__name__)
settings = get_settings()

class StatusMirror:
    """Copies execution status changes into the Redis status hash."""

    def __init__(self):
        self._last: Dict[str, str] = {}
        self._pending: Set[asyncio.Task] = set()

    def __call__(self, execution: PipelineExecution):
        status = execution.status.value
        if self._last.get(execution.id) == status:
            return
        self._last[execution.id] = status
        task = asyncio.get_running_loop().create_task(
            update_run_status(execution.id, status)
        )
        self._pending.add(task)
        task.add_done_callback(self._done)

    def _done(self, task: asyncio.Task):
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Failed to mirror run status: {task.exception()}")

    def forget(self, execution_id: str):
        self._last.pop(execution_id, None)

async def start_run(
    orchestrator: PipelineOrchestrator,
    job: Dict[str, Any],
    mirror: StatusMirror,
) -> Optional[str]:
    """Start the run described by a queued job. Returns its execution id."""
    pipeline_id = job.get("pipeline_id", "unknown")
    try:
        execution_id = orchestrator.trigger(
            pipeline_id,
            variables=job.get("variables") or {},
            triggered_by=job.get("triggered_by", "queue"),
        )
    except PipelineEngineError as e:
        logger.error(f"Rejected run of pipeline {pipeline_id}: {e}")
        return None

    orchestrator.monitor.subscribe(execution_id, mirror)
    mirror(orchestrator.monitor.get_execution(execution_id))
    logger.info(f"Started execution {execution_id} of pipeline {pipeline_id}")
    return execution_id

async def cancel_watcher(orchestrator: PipelineOrchestrator, active: Set[str]):
    """Forward cancel requests from Redis to the monitor."""
    while True:
        await asyncio.sleep(settings.cancel_poll_interval)
        try:
            for execution_id in await pop_cancel_requests(sorted(active)):
                orchestrator.monitor.cancel(execution_id)
        except Exception as e:
            logger.exception(f"Cancel watcher error: {e}")

async def finish_run(
    orchestrator: PipelineOrchestrator,
    execution_id: str,
    active: Set[str],
    mirror: StatusMirror,
):
    try:
        execution = await orchestrator.wait(execution_id)
        await update_run_status(execution_id, execution.status.value)
        logger.info(f"Execution {execution_id} done: {execution.status.value}")
    except Exception as e:
        logger.exception(f"Failed to finish execution {execution_id}: {e}")
    finally:
        active.discard(execution_id)
        mirror.forget(execution_id)
        orchestrator.monitor.forget(execution_id)

async def worker_loop(orchestrator: PipelineOrchestrator):
    """Main worker loop."""
    logger.info("Worker started, waiting for runs...")

    active: Set[str] = set()
    mirror = StatusMirror()
    watcher = asyncio.create_task(cancel_watcher(orchestrator, active))
    finishers: Set[asyncio.Task] = set()

    try:
        while True:
            try:
                job = await dequeue_run()

                if job:
                    logger.info(f"Received run request for pipeline {job.get('pipeline_id')}")
                    execution_id = await start_run(orchestrator, job, mirror)
                    if execution_id:
                        active.add(execution_id)
                        task = asyncio.create_task(
                            finish_run(orchestrator, execution_id, active, mirror)
                        )
                        finishers.add(task)
                        task.add_done_callback(finishers.discard)

            except Exception as e:
                logger.exception(f"Worker error: {e}")
                await asyncio.sleep(5)
    finally:
        watcher.cancel()

def build_orchestrator(store: Optional[ExecutionStore] = None) -> PipelineOrchestrator:
    """Wire an orchestrator with the configured store and block library."""
    store = store or ExecutionStore()
    block_library = BlockLibrary()
    if settings.blocks_file:
        block_library.load_file(settings.blocks_file)

    monitor = ExecutionMonitor(store=store)
    return PipelineOrchestrator(
        monitor,
        block_library=block_library,
        store=store,
        settings=settings,
    )

def run_worker(store: Optional[ExecutionStore] = None):
    """Entry point for worker."""
    orchestrator = build_orchestrator(store)
    try:
        asyncio.run(worker_loop(orchestrator))
    except KeyboardInterrupt:
        logger.info("Worker shutting down...")
