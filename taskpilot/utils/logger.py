"""
Logger Utility
==============

Context-aware console logging for TaskPilot.

Every component gets its own named logger so a request can be traced
through the pipeline:

    [2025-10-01T10:30:00] [INFO] [Assistant] Processing message from 6f1c...
    [2025-10-01T10:30:01] [INFO] [ToolExecutor] Executing tool: create_task
    [2025-10-01T10:30:01] [WARN] [Formatter] Structured output fell back to raw

Levels are DEBUG, INFO, WARNING and ERROR. The minimum level comes from
LOG_LEVEL. Colors are only emitted when the stream is a terminal and
NO_COLOR is unset, so container logs stay plain text.

Usage:
    from taskpilot.utils.logger import Logger

    logger = Logger("Store")
    logger.info("Connected")
    logger.debug("Query", {"table": "tasks", "filters": 3})
    logger.error("Insert failed", exc)
"""

import json
import os
import sys
from datetime import datetime
from enum import IntEnum
from typing import Any, TextIO


class LogLevel(IntEnum):
    """Log levels; higher is more severe."""
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40


class Colors:
    """ANSI escape codes for colored terminal output."""
    RESET = "\033[0m"
    DEBUG = "\033[36m"    # Cyan
    INFO = "\033[32m"     # Green
    WARNING = "\033[33m"  # Yellow
    ERROR = "\033[31m"    # Red
    DIM = "\033[2m"


_LEVEL_NAMES = {
    "DEBUG": LogLevel.DEBUG,
    "INFO": LogLevel.INFO,
    "WARNING": LogLevel.WARNING,
    "WARN": LogLevel.WARNING,
    "ERROR": LogLevel.ERROR,
}


def parse_log_level(value: str | None) -> LogLevel:
    """
    Convert a level name to a LogLevel.

    Unknown or empty values fall back to INFO.
    """
    if not value:
        return LogLevel.INFO
    return _LEVEL_NAMES.get(value.strip().upper(), LogLevel.INFO)


def _use_color(stream: TextIO) -> bool:
    if os.getenv("NO_COLOR"):
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


class Logger:
    """
    A named logger with optional structured payloads.

    Example:
        logger = Logger("Executor")
        logger.info("Executing tool: list_tasks")
        logger.debug("Arguments", {"page": 1})
    """

    def __init__(self, context: str = "", level: LogLevel | None = None):
        """
        Create a logger.

        Args:
            context: Prefix shown in every line (e.g., "Assistant")
            level: Minimum level; defaults to the LOG_LEVEL environment variable
        """
        self.context = context
        self._min_level = level if level is not None else parse_log_level(os.getenv("LOG_LEVEL"))

    def set_level(self, level: LogLevel) -> None:
        self._min_level = level

    def is_enabled(self, level: LogLevel) -> bool:
        return level >= self._min_level

    def _format_message(self, level_name: str, message: str, color: str, colored: bool) -> str:
        timestamp = datetime.now().isoformat(timespec="seconds")
        context_str = f"[{self.context}] " if self.context else ""

        if not colored:
            return f"[{timestamp}] [{level_name}] {context_str}{message}"

        return (
            f"{Colors.DIM}[{timestamp}]{Colors.RESET} "
            f"{color}[{level_name}]{Colors.RESET} "
            f"{context_str}{message}"
        )

    def _log(
        self,
        level: LogLevel,
        level_name: str,
        color: str,
        message: str,
        data: dict[str, Any] | None = None
    ) -> None:
        if not self.is_enabled(level):
            return

        stream = sys.stderr if level >= LogLevel.WARNING else sys.stdout
        colored = _use_color(stream)
        print(self._format_message(level_name, message, color, colored), file=stream)

        if data:
            data_str = json.dumps(data, indent=2, default=str)
            if colored:
                data_str = f"{Colors.DIM}{data_str}{Colors.RESET}"
            print(data_str, file=stream)

    def debug(self, message: str, data: dict[str, Any] | None = None) -> None:
        """Log detail useful during development (LOG_LEVEL=DEBUG)."""
        self._log(LogLevel.DEBUG, "DEBUG", Colors.DEBUG, message, data)

    def info(self, message: str, data: dict[str, Any] | None = None) -> None:
        """Log normal operational events."""
        self._log(LogLevel.INFO, "INFO", Colors.INFO, message, data)

    def warning(self, message: str, data: dict[str, Any] | None = None) -> None:
        """Log a degraded but recoverable condition, e.g. a fallback being taken."""
        self._log(LogLevel.WARNING, "WARN", Colors.WARNING, message, data)

    def error(self, message: str, error: BaseException | None = None) -> None:
        """
        Log an error.

        Args:
            message: What failed
            error: Optional exception whose type and message are attached
        """
        data = None
        if error is not None:
            data = {
                "error_type": type(error).__name__,
                "error_message": str(error),
            }
        self._log(LogLevel.ERROR, "ERROR", Colors.ERROR, message, data)


# Default logger for entry points
logger = Logger("TaskPilot")
