"""Structlog configuration for the scraper processes.

Library code logs through ``structlog.get_logger(__name__)`` with dot-namespaced
events; only the CLI prints.
"""
from __future__ import annotations

from typing import Literal

import logging
import structlog

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["json", "console"]

# chatty third-party loggers that log every request at INFO
_QUIET = ("httpx", "httpcore", "botocore", "urllib3")


def configure_logging(level: LogLevel = "INFO", fmt: LogFormat = "json") -> None:
    numeric = getattr(logging, level)
    logging.basicConfig(format="%(message)s", level=numeric)
    for name in _QUIET:
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))

    renderer = structlog.dev.ConsoleRenderer() if fmt == "console" else structlog.processors.JSONRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        cache_logger_on_first_use=True,
    )
