"""
Logging configuration.

Connector errors are logged with ``extra={"error_context": exc.to_dict()}``;
the formatter appends that context to the line so failed tests and sync
batches can be traced without a debugger.
"""

import logging
import sys
from typing import Optional

from core.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

NOISY_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "apscheduler", "botocore", "httpx", "aiomysql")


class ErrorContextFormatter(logging.Formatter):
    """Appends ``error_context`` (error type, context, original error) when present"""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = getattr(record, "error_context", None)
        if not context:
            return line
        details = ", ".join(
            f"{key}={value}" for key, value in context.items()
            if key not in ("message", "timestamp") and value
        )
        return f"{line} | {details}"


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging for the API process and the scripts"""
    level_name = (level or settings.LOG_LEVEL).upper()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ErrorContextFormatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, level_name, logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured at {level_name} level")
