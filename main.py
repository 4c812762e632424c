#!/usr/bin/env python3
"""
============================================================================
Token Feed Aggregator - Process Entry Point
============================================================================

Reliability Level: L6 Critical

STARTUP SEQUENCE:
    1. Load .env into the environment
    2. Configure logging
    3. Load and validate FeedConfig (invalid config -> exit code 1)
    4. Build the application and serve it with uvicorn on PORT

    uvicorn owns SIGINT/SIGTERM handling; the application lifespan stops
    the background loops and closes connections on shutdown.

USAGE:
    python main.py
============================================================================
"""

import logging
import sys

import uvicorn
from dotenv import load_dotenv

# Load environment variables first
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s | %(levelname)s | %(name)s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger("ORCHESTRATOR")

from app.main import create_app  # noqa: E402
from services.feed_config import FeedConfig, FeedConfigurationError  # noqa: E402


def main() -> int:
    """
    Validate configuration and run the server until it is stopped.

    Returns:
        Process exit code
    """
    try:
        config = FeedConfig.from_environment(validate=True)
    except FeedConfigurationError as e:
        logger.critical(f"[{e.error_code}] Refusing to start: {e.message}")
        return 1

    app = create_app(config)

    logger.info(f"[ORCHESTRATOR] Serving on port {config.port}")
    uvicorn.run(app, host="0.0.0.0", port=config.port, log_level="info")
    return 0


if __name__ == "__main__":
    sys.exit(main())
