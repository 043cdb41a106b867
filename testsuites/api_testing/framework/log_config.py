"""
================================================================================
Logging Setup
================================================================================

Centralized Loguru configuration for the API harness.

Every log line carries a ``correlation_id`` extra field. Request/response
lines bind the real value via ``logger.bind(correlation_id=...)``; all other
lines fall back to "-".

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Optional

from loguru import logger


DEFAULT_LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[correlation_id]}</cyan> | {message}"
)

_logger_initialized: bool = False


def init_logger(config: Any = None, level: Optional[str] = None) -> None:
    """
    Initialize the global Loguru logger with consistent configuration.

    Safe to call more than once; only the first call configures sinks.

    Args:
        config: ConfigLoader (or any object with ``get(key, default)``).
        level: Log level override (DEBUG, INFO, WARNING, ERROR).
    """
    global _logger_initialized

    if _logger_initialized:
        return

    def setting(key: str, default: Any) -> Any:
        return config.get(key, default) if config is not None else default

    log_level = (level or setting("logging.level", "INFO")).upper()
    log_format = setting("logging.format", DEFAULT_LOG_FORMAT)

    logger.remove()
    logger.configure(extra={"correlation_id": "-"})
    logger.add(
        sys.stderr,
        level=log_level,
        format=log_format,
        colorize=not setting("ci.environment", False),
        backtrace=True,
        diagnose=False,
    )

    log_file = setting("logging.file", None)
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level=log_level,
            format=log_format.replace("{level: <8}", "{level}"),
            rotation=setting("logging.rotation", "10 MB"),
            retention=setting("logging.retention", "7 days"),
            compression="zip",
            enqueue=True,
        )

    _logger_initialized = True
    logger.debug(f"Logger initialized with level: {log_level}")


__all__ = [
    "init_logger",
    "DEFAULT_LOG_FORMAT",
]
