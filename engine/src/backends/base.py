"""
Execution backend contract.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional

from pydantic import BaseModel

class BackendResult(BaseModel):
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

class ExecutionBackend(ABC):
    """
    Runs a fully resolved command and reports its outcome.
    Implementations raise BackendError when the command could not be run
    and BackendTimeoutError when the deadline passes.
    """

    name = "base"

    @abstractmethod
    async def run(
        self,
        command: str,
        working_directory: str,
        env: Dict[str, str],
        timeout: Optional[float] = None,
    ) -> BackendResult:
        ...
