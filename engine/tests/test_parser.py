"""Tests for pipeline parser."""

import pytest
from engine.src.services.pipeline_parser import (
    parse_pipeline_config,
    parse_pipeline_dict,
    PipelineConfigError,
)

def test_valid_pipeline():
    config = """
name: Test Pipeline
project_id: web
variables:
  - name: env
    value: staging
  - name: region
    value: eu-west-1
    scope: project
secrets:
  - deploy_key
steps:
  - id: install
    block_id: install-npm
  - id: test
    block_id: shell
    depends_on: [install]
    retries: 2
    retry_delay_seconds: 1
    config:
      command: npm test
  - id: notify
    block_id: shell
    config:
      command: echo failed
"""
    pipeline = parse_pipeline_config(config)
    assert pipeline.name == "Test Pipeline"
    assert pipeline.project_id == "web"
    assert len(pipeline.steps) == 3
    assert pipeline.steps[1].depends_on == ["install"]
    assert pipeline.steps[1].retries == 2
    assert pipeline.steps[1].config == {"command": "npm test"}
    assert pipeline.variables_for("pipeline") == {"env": "staging"}
    assert pipeline.variables_for("project") == {"region": "eu-west-1"}
    assert pipeline.secrets == ["deploy_key"]

def test_missing_steps():
    config = """
name: Bad Pipeline
"""
    with pytest.raises(PipelineConfigError, match="must have 'steps'"):
        parse_pipeline_config(config)

def test_no_steps():
    with pytest.raises(PipelineConfigError, match="at least one step"):
        parse_pipeline_config("name: Empty\nsteps: []\n")

def test_missing_step_id():
    config = """
name: Bad Pipeline
steps:
  - block_id: shell
"""
    with pytest.raises(PipelineConfigError, match="missing 'id'"):
        parse_pipeline_config(config)

def test_missing_step_block():
    config = """
name: Bad Pipeline
steps:
  - id: build
"""
    with pytest.raises(PipelineConfigError, match="missing 'block_id'"):
        parse_pipeline_config(config)

def test_depends_on_must_be_list():
    config = """
name: Bad Pipeline
steps:
  - id: build
    block_id: shell
    depends_on: lint
"""
    with pytest.raises(PipelineConfigError, match="'depends_on' must be a list"):
        parse_pipeline_config(config)

def test_invalid_yaml():
    with pytest.raises(PipelineConfigError, match="Invalid YAML"):
        parse_pipeline_config("steps: [unclosed")

def test_empty_config():
    with pytest.raises(PipelineConfigError, match="Empty"):
        parse_pipeline_config("")

def test_negative_retries_rejected():
    config = {
        "name": "Bad",
        "steps": [{"id": "a", "block_id": "shell", "retries": -1}],
    }
    with pytest.raises(PipelineConfigError, match="Invalid pipeline configuration"):
        parse_pipeline_dict(config)

def test_duplicate_variables_rejected():
    config = {
        "name": "Bad",
        "variables": [{"name": "env", "value": "a"}, {"name": "env", "value": "b"}],
        "steps": [{"id": "a", "block_id": "shell"}],
    }
    with pytest.raises(PipelineConfigError, match="Invalid pipeline configuration"):
        parse_pipeline_dict(config)

def test_dict_parsing():
    config = {
        "name": "Dict Pipeline",
        "steps": [
            {"id": "hello", "block_id": "shell", "config": {"command": "echo hello"}}
        ]
    }
    pipeline = parse_pipeline_dict(config)
    assert pipeline.name == "Dict Pipeline"
    assert len(pipeline.steps) == 1
    assert pipeline.execution_context.type == "local"
    assert pipeline.steps[0].parallel is True
