"""
Execution record models.
"""

from pydantic import BaseModel, Field
from typing import List, Optional, Dict
from datetime import datetime
from enum import Enum
import uuid

class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self not in (ExecutionStatus.PENDING, ExecutionStatus.RUNNING)

# failed -> running is a retry
STEP_TRANSITIONS = {
    ExecutionStatus.PENDING: {
        ExecutionStatus.RUNNING,
        ExecutionStatus.SKIPPED,
        ExecutionStatus.CANCELLED,
        ExecutionStatus.FAILED,
    },
    ExecutionStatus.RUNNING: {
        ExecutionStatus.SUCCESS,
        ExecutionStatus.FAILED,
        ExecutionStatus.CANCELLED,
    },
    ExecutionStatus.FAILED: {ExecutionStatus.RUNNING, ExecutionStatus.CANCELLED},
    ExecutionStatus.SUCCESS: set(),
    ExecutionStatus.CANCELLED: set(),
    ExecutionStatus.SKIPPED: set(),
}

class StepExecution(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    step_id: str
    step_name: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    output: str = ""
    error: Optional[str] = None
    exit_code: Optional[int] = None
    retry_count: int = 0
    duration_ms: Optional[int] = None
    skip_reason: Optional[str] = None
    logs: List[str] = []

class PipelineExecution(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    pipeline_id: str
    project_id: str = "default"
    status: ExecutionStatus = ExecutionStatus.PENDING
    triggered_by: str = "user"
    started_at: datetime = Field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None
    step_executions: List[StepExecution] = []
    variables: Dict[str, str] = {}
    error: Optional[str] = None
    failed_step_id: Optional[str] = None

    def step(self, step_id: str) -> StepExecution:
        for step_execution in self.step_executions:
            if step_execution.step_id == step_id:
                return step_execution
        raise KeyError(step_id)

class ExecutionProgress(BaseModel):
    execution_id: str
    pipeline_id: str
    status: ExecutionStatus
    current_steps: List[str] = []
    completed_steps: int
    total_steps: int
    percent: float
    started_at: datetime
    estimated_time_remaining_seconds: Optional[float] = None

class StepDuration(BaseModel):
    step_id: str
    step_name: str
    duration_ms: int

class ExecutionMetrics(BaseModel):
    execution_id: str
    total_duration_ms: Optional[int] = None
    steps_executed: int = 0
    steps_succeeded: int = 0
    steps_failed: int = 0
    steps_skipped: int = 0
    average_step_duration_ms: Optional[float] = None
    longest_step: Optional[StepDuration] = None
    shortest_step: Optional[StepDuration] = None

class ExecutionFilter(BaseModel):
    pipeline_id: Optional[str] = None
    project_id: Optional[str] = None
    status: Optional[ExecutionStatus] = None
    started_after: Optional[datetime] = None
    started_before: Optional[datetime] = None
    triggered_by: Optional[str] = None
    limit: int = 20
    offset: int = 0
