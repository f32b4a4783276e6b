"""
Engine services shared by the gateway's routes.
"""

import logging
from typing import Optional

from fastapi import Request

from engine.src.services.blocks import BlockLibrary
from engine.src.services.monitor import ExecutionMonitor
from engine.src.services.orchestrator import PipelineOrchestrator
from engine.src.services.store import ExecutionStore
from gateway.src.config import get_settings

logger = logging.getLogger(__name__)

class EngineServices:
    def __init__(
        self,
        store: ExecutionStore,
        monitor: ExecutionMonitor,
        orchestrator: PipelineOrchestrator,
    ):
        self.store = store
        self.monitor = monitor
        self.orchestrator = orchestrator

    @property
    def block_library(self) -> BlockLibrary:
        return self.orchestrator.block_library

def build_services(store: Optional[ExecutionStore] = None, **orchestrator_options) -> EngineServices:
    """Wire store, monitor and orchestrator together."""
    settings = get_settings()
    store = store or ExecutionStore(settings.database_url)
    store.init_db()

    block_library = orchestrator_options.pop("block_library", None) or BlockLibrary()
    if settings.blocks_file:
        count = block_library.load_file(settings.blocks_file)
        logger.info(f"Loaded {count} blocks from {settings.blocks_file}")

    monitor = ExecutionMonitor(store=store)
    orchestrator = PipelineOrchestrator(
        monitor,
        block_library=block_library,
        store=store,
        **orchestrator_options,
    )
    return EngineServices(store, monitor, orchestrator)

def get_services(request: Request) -> EngineServices:
    return request.app.state.services
