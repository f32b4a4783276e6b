from fastapi import APIRouter, Body, Depends, HTTPException
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from engine.src.errors import PipelineConfigError, PipelineEngineError
from engine.src.models.pipeline import Pipeline
from engine.src.services import dependencies, variables
from engine.src.services.pipeline_parser import parse_pipeline_dict
from engine.src.services.queue import enqueue_run
from gateway.src.services import EngineServices, get_services

router = APIRouter(prefix="/pipelines", tags=["pipelines"])

class RunRequest(BaseModel):
    variables: Dict[str, Any] = Field(default_factory=dict)
    secrets: Dict[str, str] = Field(default_factory=dict)
    triggered_by: str = "api"

class ValidationResponse(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)
    groups: List[List[str]] = Field(default_factory=list)
    missing_variables: Dict[str, List[str]] = Field(default_factory=dict)

def _parse(config: Dict[str, Any]) -> Pipeline:
    try:
        return parse_pipeline_dict(config)
    except PipelineConfigError as e:
        raise HTTPException(status_code=422, detail=str(e))

@router.post("", response_model=Pipeline, status_code=201)
def create_pipeline(
    config: Dict[str, Any] = Body(...),
    services: EngineServices = Depends(get_services),
):
    """Store a pipeline definition after checking its step graph."""
    pipeline = _parse(config)
    result = dependencies.validate(pipeline.steps)
    if not result.valid:
        raise HTTPException(status_code=422, detail=result.errors)
    services.store.save_pipeline(pipeline)
    return pipeline

@router.post("/validate", response_model=ValidationResponse)
def validate_pipeline(
    config: Dict[str, Any] = Body(...),
    services: EngineServices = Depends(get_services),
):
    """Check a definition without storing it."""
    pipeline = _parse(config)
    result = dependencies.validate(pipeline.steps)
    if not result.valid:
        return ValidationResponse(valid=False, errors=result.errors)

    groups = [group.step_ids for group in dependencies.resolve(pipeline.steps)]
    scopes = variables.VariableScopes(
        project=pipeline.variables_for("project"),
        pipeline=pipeline.variables_for("pipeline"),
        secrets={ref: "" for ref in pipeline.secrets},
    )

    errors = []
    missing_variables = {}
    for step in pipeline.steps:
        try:
            template = services.block_library.get_command_template(step.block_id)
        except PipelineEngineError as e:
            errors.append(f"Step {step.id}: {e}")
            continue
        step_scopes = variables.VariableScopes(
            project={**template.defaults(), **scopes.project},
            pipeline={**scopes.pipeline, **step.config},
            secrets=scopes.secrets,
        )
        texts = [template.template] + [variables.stringify(v) for v in step.config.values()]
        missing = sorted({
            name
            for text in texts
            for name in variables.validate(text, step_scopes).missing
        })
        if missing:
            missing_variables[step.id] = missing

    return ValidationResponse(
        valid=not errors,
        errors=errors,
        groups=groups,
        missing_variables=missing_variables,
    )

@router.get("/{pipeline_id}", response_model=Pipeline)
def get_pipeline(pipeline_id: str, services: EngineServices = Depends(get_services)):
    """Get a stored pipeline definition."""
    pipeline = services.store.load_pipeline(pipeline_id)
    if not pipeline:
        raise HTTPException(status_code=404, detail="Pipeline not found")
    return pipeline

@router.post("/{pipeline_id}/executions", status_code=202)
async def run_pipeline(
    pipeline_id: str,
    request: Optional[RunRequest] = None,
    services: EngineServices = Depends(get_services),
):
    """Start an execution of a stored pipeline in this process."""
    request = request or RunRequest()
    pipeline = services.store.load_pipeline(pipeline_id)
    if not pipeline:
        raise HTTPException(status_code=404, detail="Pipeline not found")

    try:
        execution_id = services.orchestrator.start(
            pipeline,
            variables=request.variables,
            secrets=request.secrets,
            triggered_by=request.triggered_by,
        )
    except PipelineConfigError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return {"execution_id": execution_id, "pipeline_id": pipeline_id, "status": "running"}

@router.post("/{pipeline_id}/enqueue", status_code=202)
async def enqueue_pipeline(
    pipeline_id: str,
    request: Optional[RunRequest] = None,
    services: EngineServices = Depends(get_services),
):
    """Queue a run for the engine workers. Secrets are not accepted here."""
    request = request or RunRequest()
    if not services.store.load_pipeline(pipeline_id):
        raise HTTPException(status_code=404, detail="Pipeline not found")
    if request.secrets:
        raise HTTPException(status_code=422, detail="Secrets cannot be queued")

    job = await enqueue_run(pipeline_id, request.variables, request.triggered_by)
    return {"pipeline_id": pipeline_id, "status": "queued", "queued_at": job["queued_at"]}
