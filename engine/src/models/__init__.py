from engine.src.models.pipeline import (
    Step,
    PipelineVariable,
    ExecutionContext,
    Pipeline,
    ExecutionGroup,
)
from engine.src.models.execution import (
    ExecutionStatus,
    StepExecution,
    PipelineExecution,
    ExecutionProgress,
    ExecutionMetrics,
    ExecutionFilter,
    StepDuration,
)

__all__ = [
    "Step",
    "PipelineVariable",
    "ExecutionContext",
    "Pipeline",
    "ExecutionGroup",
    "ExecutionStatus",
    "StepExecution",
    "PipelineExecution",
    "ExecutionProgress",
    "ExecutionMetrics",
    "ExecutionFilter",
    "StepDuration",
]
