"""
Logging setup for applications embedding acmelib.

Library modules only call ``logging.getLogger(__name__)``; the host decides
where records go.  ``configure_logging`` is the default wiring: structlog for
the application's own structured events, stdlib logging for acmelib's.
"""
from __future__ import annotations

import logging

import structlog

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s — %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: int = logging.INFO) -> structlog.typing.FilteringBoundLogger:
    """Configure structlog and the root stdlib logger; return a structlog logger."""
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
    )
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=DATE_FORMAT)
    logging.getLogger("acmelib").setLevel(level)
    logging.getLogger("persist").setLevel(level)
    return structlog.get_logger("acmelib")
