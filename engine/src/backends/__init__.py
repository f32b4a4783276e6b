from typing import Optional

from engine.src.backends.base import BackendResult, ExecutionBackend
from engine.src.backends.docker import DockerBackend
from engine.src.backends.local import LocalShellBackend
from engine.src.config import Settings, get_settings
from engine.src.models.pipeline import ExecutionContext

def get_backend(
    context: ExecutionContext,
    settings: Optional[Settings] = None,
) -> ExecutionBackend:
    """Select the execution backend for a pipeline's execution context."""
    settings = settings or get_settings()
    image = context.docker_image or settings.default_docker_image

    if context.type == "docker":
        return DockerBackend(image=image)

    if context.type == "kubernetes":
        from engine.src.backends.kubernetes import KubernetesBackend
        return KubernetesBackend(image=image)

    return LocalShellBackend()

__all__ = [
    "BackendResult",
    "ExecutionBackend",
    "DockerBackend",
    "LocalShellBackend",
    "get_backend",
]
