"""
Error taxonomy for the pipeline engine.
"""

from typing import List, Optional

class PipelineEngineError(Exception):
    """Base class for all engine errors."""
    pass

class PipelineConfigError(PipelineEngineError):
    """Raised when a pipeline definition cannot be parsed."""
    pass

class PipelineValidationError(PipelineEngineError):
    """Raised when the step graph is invalid (duplicate, missing or cyclic ids)."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Pipeline validation failed: " + "; ".join(self.errors))

class ResolutionError(PipelineEngineError):
    """Raised when a step command cannot be resolved."""

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        self.missing = list(missing or [])
        super().__init__(message)

class BlockNotFoundError(ResolutionError):
    pass

class SecretNotFoundError(ResolutionError):
    pass

class BackendError(PipelineEngineError):
    """Raised by an execution backend when a command could not be run."""
    pass

class BackendTimeoutError(BackendError):
    pass

class StepFailure(PipelineEngineError):
    """Terminal failure of a step after its retries are exhausted."""

    def __init__(self, step_id: str, message: str, retry_count: int = 0):
        self.step_id = step_id
        self.message = message
        self.retry_count = retry_count
        super().__init__(
            f"Step '{step_id}' failed after {retry_count} "
            f"{'retry' if retry_count == 1 else 'retries'}: {message}"
        )

class CancellationError(PipelineEngineError):
    """Raised at a decision point once the execution has been cancelled."""
    pass

class ConditionError(PipelineEngineError):
    """Raised when a step condition cannot be parsed or evaluated."""
    pass

class InvalidTransitionError(PipelineEngineError):
    pass

class ExecutionNotFoundError(PipelineEngineError):
    pass

class PipelineNotFoundError(PipelineEngineError):
    pass
