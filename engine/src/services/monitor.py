"""
Execution monitor - registry of live executions.

The orchestrator is the only writer of an execution record; it goes through
``update_execution`` / ``update_step`` so every change is applied under the
handle's lock and published to subscribers as a deep-copied snapshot.
"""

import asyncio
import logging
import threading
from datetime import datetime
from typing import AsyncIterator, Callable, Dict, List, Optional

from engine.src.errors import CancellationError, ExecutionNotFoundError, InvalidTransitionError
from engine.src.models.execution import (
    STEP_TRANSITIONS,
    ExecutionMetrics,
    ExecutionProgress,
    ExecutionStatus,
    PipelineExecution,
    StepDuration,
)

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[PipelineExecution], None]

class CancellationToken:
    """Cooperative cancellation flag for one execution."""

    def __init__(self):
        self._cancelled = False
        self._event = asyncio.Event()
        try:
            self._loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        self._cancelled = True
        loop = self._loop
        if loop is None or loop.is_closed():
            self._event.set()
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._event.set()
        else:
            loop.call_soon_threadsafe(self._event.set)

    def raise_if_cancelled(self):
        if self._cancelled:
            raise CancellationError("Execution was cancelled")

    async def sleep(self, delay: float) -> bool:
        """Wait for `delay` seconds. Returns True if cancelled meanwhile."""
        if delay <= 0:
            return self._cancelled
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
        return self._cancelled

class ExecutionHandle:
    def __init__(self, execution: PipelineExecution):
        self.execution = execution
        self.token = CancellationToken()
        self.lock = threading.RLock()
        self.subscribers: List[UpdateCallback] = []
        self.queues: List[asyncio.Queue] = []

class ExecutionMonitor:
    def __init__(self, store=None):
        self.store = store
        self._handles: Dict[str, ExecutionHandle] = {}
        self._registry_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Writer side (orchestrator)
    # ------------------------------------------------------------------

    def register(self, execution: PipelineExecution) -> CancellationToken:
        handle = ExecutionHandle(execution)
        with self._registry_lock:
            self._handles[execution.id] = handle
        logger.debug(f"Registered execution {execution.id}")
        self._publish(handle)
        return handle.token

    def update_execution(self, execution_id: str, **changes) -> PipelineExecution:
        handle = self._handle(execution_id)
        with handle.lock:
            for field, value in changes.items():
                setattr(handle.execution, field, value)
        return self._publish(handle)

    def update_step(self, execution_id: str, step_id: str, **changes) -> PipelineExecution:
        handle = self._handle(execution_id)
        with handle.lock:
            step_execution = handle.execution.step(step_id)
            status = changes.get("status")
            if status is not None and status != step_execution.status:
                if status not in STEP_TRANSITIONS[step_execution.status]:
                    raise InvalidTransitionError(
                        f"Step '{step_id}' cannot go from "
                        f"{step_execution.status.value} to {status.value}"
                    )
            log = changes.pop("log", None)
            output = changes.pop("append_output", None)
            for field, value in changes.items():
                setattr(step_execution, field, value)
            if log:
                step_execution.logs.append(f"[{datetime.utcnow().isoformat()}] {log}")
            if output:
                step_execution.output += output
        return self._publish(handle)

    def _publish(self, handle: ExecutionHandle) -> PipelineExecution:
        with handle.lock:
            snapshot = handle.execution.model_copy(deep=True)
            subscribers = list(handle.subscribers)
            queues = list(handle.queues)

        for callback in subscribers:
            try:
                callback(snapshot)
            except Exception:
                logger.exception(f"Subscriber failed for execution {snapshot.id}")

        for queue in queues:
            queue.put_nowait(snapshot)

        return snapshot

    # ------------------------------------------------------------------
    # Monitor API
    # ------------------------------------------------------------------

    def _handle(self, execution_id: str) -> ExecutionHandle:
        with self._registry_lock:
            handle = self._handles.get(execution_id)
        if handle is None:
            raise ExecutionNotFoundError(f"Execution {execution_id} not found")
        return handle

    def is_registered(self, execution_id: str) -> bool:
        with self._registry_lock:
            return execution_id in self._handles

    def get_execution(self, execution_id: str) -> PipelineExecution:
        """Point-in-time snapshot of an execution."""
        with self._registry_lock:
            handle = self._handles.get(execution_id)

        if handle is not None:
            with handle.lock:
                return handle.execution.model_copy(deep=True)

        if self.store is not None:
            execution = self.store.load_execution(execution_id)
            if execution is not None:
                return execution

        raise ExecutionNotFoundError(f"Execution {execution_id} not found")

    def subscribe(self, execution_id: str, on_update: UpdateCallback) -> Callable[[], None]:
        """Call `on_update` with a snapshot after every state change."""
        handle = self._handle(execution_id)
        with handle.lock:
            handle.subscribers.append(on_update)

        def unsubscribe():
            with handle.lock:
                if on_update in handle.subscribers:
                    handle.subscribers.remove(on_update)

        return unsubscribe

    async def stream(self, execution_id: str) -> AsyncIterator[PipelineExecution]:
        """Yield snapshots until the execution finishes."""
        handle = self._handle(execution_id)
        queue: asyncio.Queue = asyncio.Queue()
        with handle.lock:
            handle.queues.append(queue)
            current = handle.execution.model_copy(deep=True)

        try:
            yield current
            snapshot = current
            while snapshot.finished_at is None:
                snapshot = await queue.get()
                yield snapshot
        finally:
            with handle.lock:
                handle.queues.remove(queue)

    def cancel(self, execution_id: str) -> bool:
        """Request cancellation. Returns False if the execution already finished."""
        handle = self._handle(execution_id)
        with handle.lock:
            if handle.execution.finished_at is not None:
                return False
        logger.info(f"Cancelling execution {execution_id}")
        handle.token.cancel()
        return True

    def get_progress(self, execution_id: str) -> ExecutionProgress:
        execution = self.get_execution(execution_id)
        steps = execution.step_executions
        total = len(steps)
        completed = [s for s in steps if s.status.is_terminal]
        ran = [s for s in completed if s.started_at is not None and s.duration_ms is not None]
        remaining = total - len(completed)

        if total:
            percent = round(len(completed) / total * 100, 1)
        else:
            percent = 100.0 if execution.status.is_terminal else 0.0

        estimate = None
        if execution.status.is_terminal:
            estimate = 0.0
        elif ran:
            average_ms = sum(s.duration_ms for s in ran) / len(ran)
            estimate = round(average_ms * remaining / 1000, 1)

        return ExecutionProgress(
            execution_id=execution.id,
            pipeline_id=execution.pipeline_id,
            status=execution.status,
            current_steps=[s.step_id for s in steps if s.status == ExecutionStatus.RUNNING],
            completed_steps=len(completed),
            total_steps=total,
            percent=percent,
            started_at=execution.started_at,
            estimated_time_remaining_seconds=estimate,
        )

    def get_metrics(self, execution_id: str) -> ExecutionMetrics:
        execution = self.get_execution(execution_id)
        ran = [
            s for s in execution.step_executions
            if s.started_at is not None and s.duration_ms is not None
        ]
        durations = [
            StepDuration(step_id=s.step_id, step_name=s.step_name, duration_ms=s.duration_ms)
            for s in ran
        ]

        total_duration_ms = None
        if execution.finished_at is not None:
            total_duration_ms = int(
                (execution.finished_at - execution.started_at).total_seconds() * 1000
            )

        def count(status: ExecutionStatus) -> int:
            return sum(1 for s in execution.step_executions if s.status == status)

        return ExecutionMetrics(
            execution_id=execution.id,
            total_duration_ms=total_duration_ms,
            steps_executed=len(ran),
            steps_succeeded=count(ExecutionStatus.SUCCESS),
            steps_failed=count(ExecutionStatus.FAILED),
            steps_skipped=count(ExecutionStatus.SKIPPED),
            average_step_duration_ms=(
                sum(d.duration_ms for d in durations) / len(durations) if durations else None
            ),
            longest_step=max(durations, key=lambda d: d.duration_ms, default=None),
            shortest_step=min(durations, key=lambda d: d.duration_ms, default=None),
        )

    def forget(self, execution_id: str) -> None:
        """Drop a finished execution from the registry."""
        with self._registry_lock:
            self._handles.pop(execution_id, None)
