"""Shared fixtures for engine tests."""

import asyncio
from typing import Dict, List, Optional

import pytest

from engine.src.backends.base import BackendResult, ExecutionBackend
from engine.src.config import Settings
from engine.src.services.monitor import ExecutionMonitor
from engine.src.services.orchestrator import PipelineOrchestrator
from engine.src.services.vault import StaticVault

class ScriptedBackend(ExecutionBackend):
    """
    Backend that never starts a process.
    `scripts` maps a step id to a list of outcomes (BackendResult or an
    exception to raise), consumed one per attempt; the last one repeats.
    """

    name = "scripted"

    def __init__(self, scripts: Optional[Dict[str, list]] = None, delay: float = 0):
        self.scripts = scripts or {}
        self.delay = delay
        self.calls: List[dict] = []
        self.active = 0
        self.max_active = 0

    def commands_for(self, step_id: str) -> List[str]:
        return [call["command"] for call in self.calls if call["step_id"] == step_id]

    async def run(self, command, working_directory, env, timeout=None):
        step_id = env.get("PIPELINE_STEP_ID")
        self.calls.append({
            "step_id": step_id,
            "command": command,
            "working_directory": working_directory,
            "env": dict(env),
        })

        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.active -= 1

        outcomes = self.scripts.get(step_id)
        if not outcomes:
            return BackendResult(exit_code=0, stdout=f"{step_id} ok\n", duration_ms=1)
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

def failing(code: int = 1, stderr: str = "boom") -> BackendResult:
    return BackendResult(exit_code=code, stderr=stderr, duration_ms=1)

@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        default_backend="local",
        strict_variables=False,
        max_step_retries=5,
        default_step_timeout=30,
    )

@pytest.fixture
def backend():
    return ScriptedBackend()

@pytest.fixture
def monitor():
    return ExecutionMonitor()

@pytest.fixture
def orchestrator(monitor, backend, settings):
    return PipelineOrchestrator(
        monitor,
        vault=StaticVault({"deploy_key": "abc123"}),
        backend=backend,
        settings=settings,
    )
