"""
Docker backend - runs each command in a throwaway container.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional

from engine.src.backends.base import BackendResult, ExecutionBackend
from engine.src.errors import BackendError, BackendTimeoutError

logger = logging.getLogger(__name__)

class DockerBackend(ExecutionBackend):
    name = "docker"

    def __init__(self, image: str, docker_binary: str = "docker"):
        self.image = image
        self.docker_binary = docker_binary

    def build_args(
        self,
        command: str,
        working_directory: str,
        env: Dict[str, str],
    ) -> List[str]:
        """Build the `docker run` argument list."""
        args = [self.docker_binary, "run", "--rm", "-w", working_directory]

        for key, value in env.items():
            args.extend(["-e", f"{key}={value}"])

        args.extend([self.image, "sh", "-c", command])
        return args

    async def run(
        self,
        command: str,
        working_directory: str,
        env: Dict[str, str],
        timeout: Optional[float] = None,
    ) -> BackendResult:
        args = self.build_args(command, working_directory, env)
        start_time = time.monotonic()
        logger.info(f"Running command in {self.image}")

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise BackendError(f"Failed to execute Docker command: {e}")

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise BackendTimeoutError(f"Container timed out after {timeout}s")
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        return BackendResult(
            exit_code=process.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )
