"""laneb logging configuration.

laneb logs through `structlog`. Library modules only call `get_logger(__name__)`;
nothing is configured on import. Entry points (service wrappers, scripts) call
`setup_logging()` once; output goes to stderr so stdout stays machine-readable.

The level comes from `LANEB_LOG_LEVEL` (default `INFO`).
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

import structlog


def setup_logging(level: Optional[str] = None, *, json_output: bool = False) -> None:
    """Configure laneb logging.

    Args:
        level: Optional override for `LANEB_LOG_LEVEL`.
        json_output: Render one JSON object per line instead of console output.
    """
    if level:
        os.environ["LANEB_LOG_LEVEL"] = level

    level_name = os.environ.get("LANEB_LOG_LEVEL", "INFO").upper()
    numeric_level = logging.getLevelName(level_name)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
