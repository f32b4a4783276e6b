from engine.src.services import dependencies, variables
from engine.src.services.blocks import BlockLibrary, CommandTemplate, DEFAULT_BLOCKS
from engine.src.services.conditions import ConditionEvaluator, evaluate_condition
from engine.src.services.monitor import CancellationToken, ExecutionMonitor
from engine.src.services.orchestrator import PipelineOrchestrator
from engine.src.services.pipeline_parser import (
    parse_pipeline_config,
    parse_pipeline_dict,
    PipelineConfigError,
)
from engine.src.services.store import ExecutionStore
from engine.src.services.vault import (
    CredentialVault,
    EnvironmentVault,
    HttpVault,
    StaticVault,
    get_vault,
)

__all__ = [
    "dependencies",
    "variables",
    "BlockLibrary",
    "CommandTemplate",
    "DEFAULT_BLOCKS",
    "ConditionEvaluator",
    "evaluate_condition",
    "CancellationToken",
    "ExecutionMonitor",
    "PipelineOrchestrator",
    "parse_pipeline_config",
    "parse_pipeline_dict",
    "PipelineConfigError",
    "ExecutionStore",
    "CredentialVault",
    "EnvironmentVault",
    "HttpVault",
    "StaticVault",
    "get_vault",
]
