from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from typing import AsyncIterator, List, Optional
from datetime import datetime

from engine.src.errors import ExecutionNotFoundError
from engine.src.models.execution import (
    ExecutionFilter,
    ExecutionMetrics,
    ExecutionProgress,
    ExecutionStatus,
    PipelineExecution,
)
from engine.src.services.queue import request_cancel
from gateway.src.services import EngineServices, get_services

router = APIRouter(prefix="/executions", tags=["executions"])

def _event(execution: PipelineExecution) -> str:
    return f"event: execution\ndata: {execution.model_dump_json()}\n\n"

@router.get("", response_model=List[PipelineExecution])
def list_executions(
    pipeline_id: Optional[str] = None,
    project_id: Optional[str] = None,
    status: Optional[ExecutionStatus] = None,
    triggered_by: Optional[str] = None,
    started_after: Optional[datetime] = None,
    started_before: Optional[datetime] = None,
    limit: int = 20,
    offset: int = 0,
    services: EngineServices = Depends(get_services),
):
    """List stored executions, newest first."""
    return services.store.list_executions(ExecutionFilter(
        pipeline_id=pipeline_id,
        project_id=project_id,
        status=status,
        triggered_by=triggered_by,
        started_after=started_after,
        started_before=started_before,
        limit=limit,
        offset=offset,
    ))

@router.get("/{execution_id}", response_model=PipelineExecution)
def get_execution(execution_id: str, services: EngineServices = Depends(get_services)):
    """Get a point-in-time snapshot of an execution."""
    try:
        return services.monitor.get_execution(execution_id)
    except ExecutionNotFoundError:
        raise HTTPException(status_code=404, detail="Execution not found")

@router.get("/{execution_id}/progress", response_model=ExecutionProgress)
def get_progress(execution_id: str, services: EngineServices = Depends(get_services)):
    try:
        return services.monitor.get_progress(execution_id)
    except ExecutionNotFoundError:
        raise HTTPException(status_code=404, detail="Execution not found")

@router.get("/{execution_id}/metrics", response_model=ExecutionMetrics)
def get_metrics(execution_id: str, services: EngineServices = Depends(get_services)):
    try:
        return services.monitor.get_metrics(execution_id)
    except ExecutionNotFoundError:
        raise HTTPException(status_code=404, detail="Execution not found")

@router.get("/{execution_id}/events")
async def stream_events(execution_id: str, services: EngineServices = Depends(get_services)):
    """Server-sent events with a snapshot after every state change."""
    monitor = services.monitor

    if monitor.is_registered(execution_id):
        async def events() -> AsyncIterator[str]:
            try:
                async for snapshot in monitor.stream(execution_id):
                    yield _event(snapshot)
            except ExecutionNotFoundError:
                # finished and dropped from the registry before streaming began
                yield _event(monitor.get_execution(execution_id))
    else:
        try:
            execution = monitor.get_execution(execution_id)
        except ExecutionNotFoundError:
            raise HTTPException(status_code=404, detail="Execution not found")

        async def events() -> AsyncIterator[str]:
            yield _event(execution)

    return StreamingResponse(events(), media_type="text/event-stream")

@router.post("/{execution_id}/cancel")
async def cancel_execution(execution_id: str, services: EngineServices = Depends(get_services)):
    """Request cancellation. Takes effect before the next step or retry."""
    monitor = services.monitor

    if monitor.is_registered(execution_id):
        accepted = monitor.cancel(execution_id)
        return {"execution_id": execution_id, "cancel_requested": accepted}

    execution = services.store.load_execution(execution_id)
    if execution is None:
        raise HTTPException(status_code=404, detail="Execution not found")
    if execution.finished_at is not None:
        return {"execution_id": execution_id, "cancel_requested": False}

    # Owned by a queue worker
    await request_cancel(execution_id)
    return {"execution_id": execution_id, "cancel_requested": True}
