"""Logger module for acme-loadgen

Usage:
    from loadgen.logger import Logger, ConsoleLogger, session_logger

    session_logger.info("loadgen.start", event="loadgen.start", rate=5.0)

    # Or implement your own
    class MyCustomLogger(Logger):
        def info(self, message: str, **kwargs):
            # Your custom implementation
            pass
"""

import logging
import os

from .base import Logger
from .console_logger import ConsoleLogger

# Shared logger instance for modules that just need basic console logging
session_logger: Logger = ConsoleLogger(
    level=getattr(logging, os.environ.get("LOADGEN_LOG_LEVEL", "INFO").upper(), logging.INFO)
)

__all__ = [
    "Logger",
    "ConsoleLogger",
    "session_logger",
]
