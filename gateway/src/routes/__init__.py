from gateway.src.routes.health import router as health_router
from gateway.src.routes.pipelines import router as pipelines_router
from gateway.src.routes.executions import router as executions_router

__all__ = ["health_router", "pipelines_router", "executions_router"]
