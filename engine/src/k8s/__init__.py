from engine.src.k8s.client import (
    init_k8s_client,
    get_batch_api,
    get_core_api,
    ensure_namespace,
    get_job_pod,
    get_pod_exit_code,
    get_pod_logs,
    delete_job,
)
from engine.src.k8s.job_builder import (
    build_job,
    build_job_name,
    get_job_status,
)

__all__ = [
    "init_k8s_client",
    "get_batch_api",
    "get_core_api",
    "ensure_namespace",
    "get_job_pod",
    "get_pod_exit_code",
    "get_pod_logs",
    "delete_job",
    "build_job",
    "build_job_name",
    "get_job_status",
]
