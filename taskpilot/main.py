"""
TaskPilot - Main Entry Point
============================

Starts the HTTP API. It:
1. Loads configuration
2. Applies the log level
3. Builds the FastAPI app (the assistant is created on startup)
4. Serves it with uvicorn

Run with:
    python -m taskpilot.main

Or after installing:
    taskpilot
"""

import os
import sys

import uvicorn

from taskpilot.utils.config import get_config
from taskpilot.utils.logger import Logger, logger, parse_log_level

main_logger = Logger("Main")


def run():
    """
    Synchronous entry point.

    This is called when running with the `taskpilot` command.
    """
    try:
        config = get_config()
    except ValueError as e:
        main_logger.error("Invalid configuration", e)
        sys.exit(1)

    # Loggers created from here on read LOG_LEVEL; the two below already exist
    os.environ.setdefault("LOG_LEVEL", config.log_level)
    level = parse_log_level(config.log_level)
    logger.set_level(level)
    main_logger.set_level(level)

    from taskpilot.api import create_app
    app = create_app(config=config)

    main_logger.info(f"Starting TaskPilot on {config.server.host}:{config.server.port}...")
    uvicorn.run(app, host=config.server.host, port=config.server.port, log_level=level.name.lower())


if __name__ == "__main__":
    run()
