import logging
import sys

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import Optional

from gateway.src.config import get_settings
from gateway.src.routes import executions_router, health_router, pipelines_router
from gateway.src.services import EngineServices, build_services

settings = get_settings()

logger = logging.getLogger(__name__)

def create_app(services: Optional[EngineServices] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger.info("Starting Pipewright gateway")
        app.state.services = services or build_services()
        yield
        # Shutdown
        logger.info("Shutting down Pipewright gateway")

    app = FastAPI(
        title="Pipewright",
        description="Pipeline execution engine",
        version="0.1.0",
        lifespan=lifespan
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health_router)
    app.include_router(pipelines_router, prefix="/api")
    app.include_router(executions_router, prefix="/api")

    @app.get("/")
    async def root():
        return {
            "name": "Pipewright",
            "version": "0.1.0",
            "docs": "/docs"
        }

    return app

app = create_app()

if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
