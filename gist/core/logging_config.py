"""Structured logging configuration.

Supports two modes via LOG_FORMAT env var:
- "json" (default for production): JSON-formatted log lines with task_id
- "text" (for development): Human-readable log lines
"""

import logging
import sys

from pythonjsonlogger.json import JsonFormatter

from gist.core.log_context import get_task_id


class TaskIDFilter(logging.Filter):
    """Inject task_id into every log record."""

    def filter(self, record):
        record.task_id = get_task_id()
        return True


def configure_logging(log_format: str = "json", log_level: str = "INFO"):
    """Configure root logger with the specified format.

    Args:
        log_format: "json" or "text"
        log_level: Python log level name
    """
    root = logging.getLogger()
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(TaskIDFilter())

    if log_format == "json":
        formatter = JsonFormatter(
            fmt="%(asctime)s %(name)s %(levelname)s %(message)s %(task_id)s",
            rename_fields={
                "levelname": "level",
                "name": "logger",
                "asctime": "timestamp",
            },
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s [%(task_id)s] %(message)s"
        )

    handler.setFormatter(formatter)
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # curl_cffi and readability-lxml are chatty at INFO/DEBUG
    logging.getLogger("curl_cffi").setLevel(logging.WARNING)
    logging.getLogger("readability.readability").setLevel(logging.WARNING)
    logging.getLogger("trafilatura").setLevel(logging.WARNING)
