"""
Kubernetes Job builder for step attempts.
"""

from kubernetes import client
from typing import Dict, Optional
import hashlib

from engine.src.config import get_settings

settings = get_settings()

def build_job_name(execution_id: str, step_id: str, attempt: int) -> str:
    """Generate a unique job name."""
    # K8s names must be lowercase, alphanumeric, max 63 chars
    safe_name = step_id.lower().replace(" ", "-").replace("_", "-")
    safe_name = "".join(c for c in safe_name if c.isalnum() or c == "-")
    safe_name = safe_name[:20].strip("-") or "step"

    # Use short hash of execution_id for uniqueness
    run_hash = hashlib.md5(execution_id.encode()).hexdigest()[:8]

    return f"pw-{run_hash}-{safe_name}-{attempt}"

def build_job(
    job_name: str,
    image: str,
    command: str,
    working_directory: str,
    env_vars: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None,
    labels: Optional[Dict[str, str]] = None,
) -> client.V1Job:
    """
    Build a Kubernetes Job running a single resolved command.
    """
    env = [
        client.V1EnvVar(name=key, value=value)
        for key, value in (env_vars or {}).items()
    ]

    job_labels = {"app": "pipewright"}
    if labels:
        job_labels.update(labels)

    # Container spec
    container = client.V1Container(
        name="step",
        image=image,
        command=["/bin/sh", "-c"],
        args=[command],
        working_dir=working_directory if working_directory not in ("", ".") else None,
        env=env,
        resources=client.V1ResourceRequirements(
            requests={"cpu": "100m", "memory": "128Mi"},
            limits={"cpu": "500m", "memory": "512Mi"},
        ),
    )

    # Pod template
    template = client.V1PodTemplateSpec(
        metadata=client.V1ObjectMeta(labels=job_labels),
        spec=client.V1PodSpec(
            containers=[container],
            restart_policy="Never",
        ),
    )

    # Job spec
    job_spec = client.V1JobSpec(
        template=template,
        backoff_limit=0,  # Retries are handled by the orchestrator
        active_deadline_seconds=int(timeout) if timeout else None,
        ttl_seconds_after_finished=settings.job_ttl_after_finished,
    )

    return client.V1Job(
        api_version="batch/v1",
        kind="Job",
        metadata=client.V1ObjectMeta(
            name=job_name,
            namespace=settings.k8s_namespace,
            labels=job_labels,
        ),
        spec=job_spec,
    )

def get_job_status(job: client.V1Job) -> str:
    """
    Determine job status from Kubernetes Job object.
    Returns: 'pending', 'running', 'succeeded', 'failed'
    """
    if job.status is None:
        return "pending"

    if job.status.succeeded and job.status.succeeded > 0:
        return "succeeded"

    if job.status.failed and job.status.failed > 0:
        return "failed"

    if job.status.active and job.status.active > 0:
        return "running"

    return "pending"
