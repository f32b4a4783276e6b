"""
Pipeline YAML parser and validator.
"""

import yaml
from typing import Dict, Any, Optional
from pydantic import ValidationError

from engine.src.config import get_settings
from engine.src.errors import PipelineConfigError
from engine.src.models.pipeline import Pipeline

def parse_pipeline_config(yaml_content: str) -> Pipeline:
    """Parse pipeline YAML configuration from string."""
    try:
        config = yaml.safe_load(yaml_content)
    except yaml.YAMLError as e:
        raise PipelineConfigError(f"Invalid YAML: {e}")

    return validate_config(config)

def parse_pipeline_dict(config: Dict[str, Any]) -> Pipeline:
    """Validate pipeline configuration from dict."""
    return validate_config(config)

def validate_config(config: Optional[Dict[str, Any]]) -> Pipeline:
    """Validate pipeline configuration structure."""
    if not config:
        raise PipelineConfigError("Empty pipeline configuration")

    if not isinstance(config, dict):
        raise PipelineConfigError("Pipeline configuration must be a dictionary")

    name = config.get("name", "Unnamed Pipeline")
    if not isinstance(name, str):
        raise PipelineConfigError("Pipeline 'name' must be a string")

    if "steps" not in config:
        raise PipelineConfigError("Pipeline must have 'steps' defined")

    steps = config["steps"]
    if not isinstance(steps, list):
        raise PipelineConfigError("Pipeline 'steps' must be a list")

    if len(steps) == 0:
        raise PipelineConfigError("Pipeline must have at least one step")

    for i, step in enumerate(steps):
        validate_step(step, i)

    data = dict(config)
    data["name"] = name

    settings = get_settings()
    context = dict(data.get("execution_context") or {})
    context.setdefault("type", settings.default_backend)
    context.setdefault("working_directory", settings.default_working_directory)
    data["execution_context"] = context

    try:
        return Pipeline.model_validate(data)
    except ValidationError as e:
        raise PipelineConfigError(f"Invalid pipeline configuration: {e}")

def validate_step(step: Dict[str, Any], index: int):
    """Validate the required fields of a single step."""
    if not isinstance(step, dict):
        raise PipelineConfigError(f"Step {index} must be a dictionary")

    # Required fields
    if "id" not in step:
        raise PipelineConfigError(f"Step {index} missing 'id'")

    if "block_id" not in step:
        raise PipelineConfigError(f"Step {index} missing 'block_id'")

    # Validate types
    if not isinstance(step["id"], str):
        raise PipelineConfigError(f"Step {index} 'id' must be a string")

    if not isinstance(step.get("config", {}), dict):
        raise PipelineConfigError(f"Step {index} 'config' must be a dictionary")

    for key in ("depends_on", "on_success", "on_failure"):
        if not isinstance(step.get(key, []), list):
            raise PipelineConfigError(f"Step {index} '{key}' must be a list")
