"""Structured JSON logging configuration."""

import logging
import sys
from typing import Iterable
from pythonjsonlogger import jsonlogger

LOG_FORMAT = '%(asctime)s %(name)s %(levelname)s %(message)s'


def json_handler() -> logging.Handler:
    """Stdout handler writing one JSON object per record."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(jsonlogger.JsonFormatter(LOG_FORMAT, timestamp=True))
    return handler


def setup_logger(
    name: str = "mssql_exporter",
    level: str = "INFO",
    capture: Iterable[str] = ()
) -> logging.Logger:
    """
    Configure structured JSON logging.

    Child loggers (``app``, ``db``, ``queries``, ``collection``) created with
    ``logger.getChild()`` inherit the handler through propagation. Loggers
    named in ``capture`` (e.g. ``uvicorn``) are given the same handler and
    level so the server's own records come out in the same format.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        capture: Names of third-party loggers to route through the handler

    Returns:
        logging.Logger: Configured logger instance
    """
    handler = json_handler()

    for logger_name in (name, *capture):
        target = logging.getLogger(logger_name)
        target.setLevel(getattr(logging, level.upper()))
        # Remove existing handlers to avoid duplicates
        target.handlers = [handler]
        # Don't propagate to root logger
        target.propagate = False

    return logging.getLogger(name)
