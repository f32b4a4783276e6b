"""
Pipeline definition models.
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from typing import List, Optional, Dict, Any, Literal
import uuid

class Step(BaseModel):
    id: str
    block_id: str
    name: str = ""
    config: Dict[str, Any] = {}
    depends_on: List[str] = []
    condition: Optional[str] = None
    retries: int = Field(default=0, ge=0)
    retry_delay_seconds: float = Field(default=0, ge=0)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)
    parallel: bool = True
    on_success: List[str] = []
    on_failure: List[str] = []

    @field_validator("depends_on", "on_success", "on_failure")
    @classmethod
    def _dedupe(cls, ids: List[str]) -> List[str]:
        # Declared as sets, but declaration order is kept for deterministic plans
        return list(dict.fromkeys(ids))

    @property
    def display_name(self) -> str:
        return self.name or self.id

class PipelineVariable(BaseModel):
    name: str
    value: Any = ""
    type: Literal["string", "number", "boolean"] = "string"
    description: Optional[str] = None
    scope: Literal["project", "pipeline"] = "pipeline"

class ExecutionContext(BaseModel):
    type: Literal["local", "docker", "kubernetes"] = "local"
    docker_image: Optional[str] = None
    working_directory: str = "."
    environment: Dict[str, str] = {}

class Pipeline(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = "Unnamed Pipeline"
    project_id: str = "default"
    description: Optional[str] = None
    steps: List[Step] = []
    variables: List[PipelineVariable] = []
    secrets: List[str] = []
    execution_context: ExecutionContext = Field(default_factory=ExecutionContext)
    enabled: bool = True

    @model_validator(mode="after")
    def _unique_variables(self) -> "Pipeline":
        seen = set()
        for variable in self.variables:
            key = (variable.scope, variable.name)
            if key in seen:
                raise ValueError(
                    f"Duplicate {variable.scope} variable '{variable.name}'"
                )
            seen.add(key)
        return self

    def variables_for(self, scope: str) -> Dict[str, Any]:
        return {v.name: v.value for v in self.variables if v.scope == scope}

class ExecutionGroup(BaseModel):
    steps: List[Step]
    can_run_in_parallel: bool

    @property
    def step_ids(self) -> List[str]:
        return [step.id for step in self.steps]
