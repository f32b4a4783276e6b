"""
Kubernetes API access for the Job backend.

API objects are created lazily on first use and shared by every attempt
running in this process.
"""

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from typing import Dict, Optional
import logging

from engine.src.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

_apis: Dict[str, object] = {}

def init_k8s_client() -> bool:
    """Load cluster credentials and build the API objects."""
    try:
        if settings.k8s_in_cluster:
            config.load_incluster_config()
            source = "in-cluster"
        else:
            config.load_kube_config()
            source = "kubeconfig"
    except Exception as e:
        logger.error(f"Failed to load Kubernetes config: {e}")
        return False

    api_client = client.ApiClient()
    _apis["batch"] = client.BatchV1Api(api_client)
    _apis["core"] = client.CoreV1Api(api_client)
    logger.info(f"Kubernetes client initialized from {source} config")
    return True

def get_batch_api() -> Optional[client.BatchV1Api]:
    """BatchV1 API for Job operations, or None if no cluster is reachable."""
    if "batch" not in _apis:
        init_k8s_client()
    return _apis.get("batch")

def get_core_api() -> Optional[client.CoreV1Api]:
    """CoreV1 API for namespace and pod operations."""
    if "core" not in _apis:
        init_k8s_client()
    return _apis.get("core")

def ensure_namespace():
    """Create the step namespace on first use."""
    core_v1 = get_core_api()
    name = settings.k8s_namespace

    try:
        core_v1.read_namespace(name=name)
    except ApiException as e:
        if e.status != 404:
            raise
        core_v1.create_namespace(
            body=client.V1Namespace(metadata=client.V1ObjectMeta(name=name))
        )
        logger.info(f"Created namespace '{name}'")

def get_job_pod(job_name: str) -> Optional[client.V1Pod]:
    """The pod the Job controller started for `job_name`."""
    pods = get_core_api().list_namespaced_pod(
        namespace=settings.k8s_namespace,
        label_selector=f"job-name={job_name}",
    )
    return pods.items[0] if pods.items else None

def get_pod_exit_code(pod: client.V1Pod) -> Optional[int]:
    """Exit code of the step container, if it terminated."""
    statuses = (pod.status.container_statuses or []) if pod.status else []
    for status in statuses:
        terminated = status.state.terminated if status.state else None
        if terminated is not None:
            return terminated.exit_code
    return None

def get_pod_logs(pod_name: str, tail_lines: int = 1000) -> str:
    """Container output; an error note if the logs are unavailable."""
    try:
        return get_core_api().read_namespaced_pod_log(
            name=pod_name,
            namespace=settings.k8s_namespace,
            tail_lines=tail_lines,
        )
    except ApiException as e:
        logger.warning(f"Could not read logs of pod {pod_name}: {e.reason}")
        return f"Error fetching logs: {e.reason}"

def delete_job(job_name: str):
    """Remove a finished Job together with its pods."""
    try:
        get_batch_api().delete_namespaced_job(
            name=job_name,
            namespace=settings.k8s_namespace,
            body=client.V1DeleteOptions(propagation_policy="Foreground"),
        )
        logger.info(f"Deleted job {job_name}")
    except ApiException as e:
        if e.status == 404:
            return
        logger.error(f"Failed to delete job {job_name}: {e}")
