"""
Local shell backend - runs commands with /bin/sh on the engine host.
"""

import asyncio
import logging
import os
import time
from typing import Dict, Optional

from engine.src.backends.base import BackendResult, ExecutionBackend
from engine.src.errors import BackendError, BackendTimeoutError

logger = logging.getLogger(__name__)

class LocalShellBackend(ExecutionBackend):
    name = "local"

    def __init__(self, inherit_env: bool = True):
        self.inherit_env = inherit_env

    async def run(
        self,
        command: str,
        working_directory: str,
        env: Dict[str, str],
        timeout: Optional[float] = None,
    ) -> BackendResult:
        full_env = dict(os.environ) if self.inherit_env else {}
        full_env.update(env)
        start_time = time.monotonic()

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                cwd=working_directory,
                env=full_env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise BackendError(f"Failed to start command: {e}")

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise BackendTimeoutError(f"Command timed out after {timeout}s")
        except asyncio.CancelledError:
            # Deadline enforced by the caller
            process.kill()
            await process.wait()
            raise

        duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.debug(f"Command exited with {process.returncode} in {duration_ms}ms")

        return BackendResult(
            exit_code=process.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            duration_ms=duration_ms,
        )
