"""
Kubernetes backend - runs each attempt as a batch/v1 Job.
"""

import asyncio
import itertools
import logging
import time
from typing import Dict, Optional

from kubernetes.client.rest import ApiException

from engine.src.backends.base import BackendResult, ExecutionBackend
from engine.src.config import get_settings
from engine.src.errors import BackendError, BackendTimeoutError
from engine.src.k8s import (
    build_job,
    build_job_name,
    delete_job,
    ensure_namespace,
    get_batch_api,
    get_job_pod,
    get_job_status,
    get_pod_exit_code,
    get_pod_logs,
)

logger = logging.getLogger(__name__)

class KubernetesBackend(ExecutionBackend):
    name = "kubernetes"

    def __init__(self, image: str, poll_interval: Optional[float] = None):
        settings = get_settings()
        self.image = image
        self.namespace = settings.k8s_namespace
        self.poll_interval = poll_interval or settings.job_poll_interval
        self._attempts = itertools.count(1)

    async def run(
        self,
        command: str,
        working_directory: str,
        env: Dict[str, str],
        timeout: Optional[float] = None,
    ) -> BackendResult:
        execution_id = env.get("PIPELINE_EXECUTION_ID", "adhoc")
        step_id = env.get("PIPELINE_STEP_ID", "step")
        job_name = build_job_name(execution_id, step_id, next(self._attempts))

        job = build_job(
            job_name=job_name,
            image=self.image,
            command=command,
            working_directory=working_directory,
            env_vars=env,
            timeout=timeout,
            labels={"execution-id": execution_id[:63], "step-id": step_id[:63]},
        )

        batch_v1 = get_batch_api()
        if batch_v1 is None:
            raise BackendError("Kubernetes client is not available")

        start_time = time.monotonic()
        try:
            await asyncio.to_thread(ensure_namespace)
            await asyncio.to_thread(
                batch_v1.create_namespaced_job,
                namespace=self.namespace,
                body=job,
            )
            logger.info(f"Created job {job_name}")
        except ApiException as e:
            raise BackendError(f"Failed to create job {job_name}: {e.reason}")

        try:
            status = await self._wait_for_job(job_name, timeout, start_time)
            pod = await asyncio.to_thread(get_job_pod, job_name)
            logs = await asyncio.to_thread(get_pod_logs, pod.metadata.name) if pod else ""
            exit_code = get_pod_exit_code(pod) if pod else None
        finally:
            await asyncio.to_thread(delete_job, job_name)

        if exit_code is None:
            exit_code = 0 if status == "succeeded" else 1

        return BackendResult(
            exit_code=exit_code,
            stdout=logs,
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )

    async def _wait_for_job(
        self,
        job_name: str,
        timeout: Optional[float],
        start_time: float,
    ) -> str:
        """Poll the job until it succeeds or fails."""
        batch_v1 = get_batch_api()

        while True:
            if timeout is not None and time.monotonic() - start_time > timeout:
                raise BackendTimeoutError(f"Job {job_name} timed out after {timeout}s")

            try:
                job = await asyncio.to_thread(
                    batch_v1.read_namespaced_job,
                    name=job_name,
                    namespace=self.namespace,
                )
            except ApiException as e:
                logger.error(f"Error checking job status: {e}")
                await asyncio.sleep(self.poll_interval)
                continue

            status = get_job_status(job)
            if status in ("succeeded", "failed"):
                return status

            await asyncio.sleep(self.poll_interval)
