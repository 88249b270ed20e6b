"""structlog configuration for the rollout tool.

Modules log through `structlog.get_logger(__name__)` with snake_case event
names; this module decides once, at CLI start-up, how those events are
rendered. Logs go to stderr so they never mix with JSON written to stdout.
"""

from __future__ import annotations

import logging
import sys

import structlog

__all__ = ["configure_logging"]


def configure_logging(log_level: str = "WARNING", json_output: bool = False) -> None:
    """Configure structlog processors and level filtering.

    Args:
        log_level: Minimum level to emit (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_output: Render one JSON object per line instead of console format.

    Examples:
        >>> configure_logging(log_level="INFO", json_output=True)
        >>> structlog.get_logger().info("configured")
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.WARNING

    renderer: structlog.typing.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
