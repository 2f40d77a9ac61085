"""Central logging configuration shared by the API and the scheduled sync."""

from __future__ import annotations

import logging
from datetime import datetime, timezone as dt_timezone
from logging.config import dictConfig
from typing import Optional
from zoneinfo import ZoneInfo


DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Third-party loggers that are chatty at INFO and add nothing to a sync log.
QUIET_LOGGERS = ("googleapiclient.discovery_cache", "apscheduler.executors.default")


class _TimezoneFormatter(logging.Formatter):
    """Formatter that renders timestamps in the configured IANA timezone."""

    def __init__(self, fmt: str, datefmt: Optional[str] = None, timezone: Optional[str] = None):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.tzinfo = ZoneInfo(timezone) if timezone else None

    def formatTime(self, record, datefmt=None):  # noqa: N802 - override signature
        stamp = datetime.fromtimestamp(record.created, tz=dt_timezone.utc)
        if self.tzinfo:
            stamp = stamp.astimezone(self.tzinfo)
        return stamp.strftime(datefmt) if datefmt else stamp.isoformat()


def configure_logging(log_level: str = "INFO", timezone: Optional[str] = None) -> None:
    """Configure console logging for the service and the scheduled sync jobs.

    Safe to call more than once: existing root handlers are replaced so sync
    summaries are not printed twice when the API and scheduler both start.
    """

    level = getattr(logging, log_level.upper(), logging.INFO)
    formatter = {
        "()": _TimezoneFormatter,
        "fmt": DEFAULT_FORMAT,
        "datefmt": DEFAULT_DATE_FORMAT,
    }
    if timezone:
        formatter["timezone"] = timezone

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"standard": formatter},
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "level": level,
                    "stream": "ext://sys.stdout",
                }
            },
            "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
            "root": {
                "handlers": ["console"],
                "level": level,
            },
        }
    )

    logging.captureWarnings(True)
