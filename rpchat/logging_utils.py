"""Logging utilities with local timezone support."""

import logging
import time

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


class LocalTimeFormatter(logging.Formatter):
    """Formatter that uses local time instead of UTC."""

    def formatTime(self, record, datefmt=None):
        """Override to use local time."""
        ct = self.converter(record.created)
        if datefmt:
            s = time.strftime(datefmt, ct)
        else:
            s = time.strftime("%Y-%m-%d %H:%M:%S", ct)
            s = f"{s},{int(record.msecs):03d}"
        return s

    converter = time.localtime  # Use local time instead of gmtime


class HealthCheckAccessFilter(logging.Filter):
    """Drop GET /health from uvicorn access log."""

    def filter(self, record: logging.LogRecord) -> bool:
        return "GET /health " not in record.getMessage()


def configure_logging(level: str = "INFO") -> None:
    """Install a local-time handler on the root logger (idempotent)."""
    root = logging.getLogger()
    root.setLevel(level.upper())
    for handler in root.handlers:
        if isinstance(handler.formatter, LocalTimeFormatter):
            return
    handler = logging.StreamHandler()
    handler.setFormatter(LocalTimeFormatter(LOG_FORMAT))
    root.addHandler(handler)
