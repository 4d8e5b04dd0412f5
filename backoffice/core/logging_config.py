"""
Logging setup shared by the API process and the import worker threads.

Workers run on a thread pool, so every line carries the thread name next to
the logger name; that is usually enough to follow one job through the log.
"""
from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Dict, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(threadName)s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Libraries that log every request or statement at INFO.
QUIET_LOGGERS: Dict[str, str] = {
    "botocore": "WARNING",
    "boto3": "WARNING",
    "s3transfer": "WARNING",
    "urllib3": "WARNING",
    "sqlalchemy.engine": "WARNING",
    "multipart": "WARNING",
}

_is_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    """
    Install the console handler once per process.

    Args:
        level: Level for the root and ``backoffice`` loggers (e.g. "DEBUG").
    """
    global _is_configured

    if _is_configured:
        return

    log_level = (level or "INFO").upper()
    loggers = {name: {"level": quiet_level} for name, quiet_level in QUIET_LOGGERS.items()}
    loggers["backoffice"] = {"level": log_level}

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {"format": LOG_FORMAT, "datefmt": LOG_DATE_FORMAT},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "level": log_level,
                }
            },
            "loggers": loggers,
            "root": {"handlers": ["console"], "level": log_level},
        }
    )
    logging.getLogger(__name__).debug("Logging configured at %s", log_level)

    _is_configured = True
