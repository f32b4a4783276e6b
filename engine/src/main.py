"""
Pipewright engine - worker entry point.
"""

import logging
import sys

from engine.src.config import get_settings
from engine.src.services.store import ExecutionStore
from engine.src.worker import run_worker

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

logger = logging.getLogger(__name__)

def main():
    """Main entry point."""
    logger.info("Starting Pipewright engine")
    logger.info(f"Default backend: {settings.default_backend}")
    logger.info(f"Redis URL: {settings.redis_url}")

    store = ExecutionStore()
    try:
        store.init_db()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        sys.exit(1)

    logger.info("Starting worker...")
    run_worker(store)

if __name__ == "__main__":
    main()
