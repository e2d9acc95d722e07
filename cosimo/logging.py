"""
Logging configuration module for Cosimo MCP Server.

Configures structlog with appropriate processors. Output goes to stderr
because stdout carries the line transport.
"""

import logging
import sys

import structlog

from .config import settings


def configure_logging(level: str | None = None) -> None:
    """Configure structlog for the application.

    Uses ConsoleRenderer for readable output on stderr.
    """
    level_name = (level or settings.log_level).upper()
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level_name, logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
