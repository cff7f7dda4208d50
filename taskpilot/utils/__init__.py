"""
Utilities Module
================

Common utilities shared across the application:
- logger: context-aware logging with levels
- config: centralized configuration management
- dates: due-date parsing and arithmetic
"""

from taskpilot.utils.logger import Logger, logger
from taskpilot.utils.config import get_config, Config

__all__ = ["Logger", "logger", "get_config", "Config"]
