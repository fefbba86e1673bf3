"""
Logging configuration for the application.

This module sets up consistent logging across all components of the
orchestration layer, making it easier to trace submissions, callbacks and
polls across backends.
"""

import logging
import os
import sys

from rich.logging import RichHandler


def _default_level() -> int:
    level_name = os.environ.get("FLOWGATE_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def setup_logger(name: str, level: int = None) -> logging.Logger:
    """
    Configure a logger with consistent formatting.

    Handles two scenarios:
    1. CLI usage: the CLI installs a RichHandler on the root logger.
       We detect this and let logs propagate to root (single output).
    2. Direct usage (API server, tests): no RichHandler on root. We add our
       own StreamHandler and disable propagation to prevent duplicate output.

    Args:
        name: Name of the logger
        level: Logging level (default: FLOWGATE_LOG_LEVEL or INFO)

    Returns:
        logging.Logger: Configured logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        logger.setLevel(level if level is not None else _default_level())

        has_rich_handler = any(
            isinstance(handler, RichHandler)
            for handler in logging.getLogger().handlers
        )

        if not has_rich_handler:
            handler = logging.StreamHandler(sys.stdout)
            formatter = logging.Formatter(
                "[%(asctime)s] %(levelname)s - [%(name)s] - %(message)s"
            )
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            # root may carry a basicConfig handler as well
            logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the given name.

    Args:
        name: Name of the logger

    Returns:
        logging.Logger: Logger instance
    """
    return setup_logger(name)
