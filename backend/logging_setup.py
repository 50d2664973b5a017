"""Root logger configuration driven by the Config snapshot.

LOG_LEVEL picks the level, LOG_FORMAT=json switches to one JSON object per
line, and LOG_FILE adds a size-rotated file next to the console output.
"""

import json
import logging
import os
from logging.handlers import RotatingFileHandler

from version import __version__

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 3

logger = logging.getLogger(__name__)


class StructuredJSONFormatter(logging.Formatter):
    """One JSON object per record, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        # Aggregator workers are named provider_N
        if record.threadName and record.threadName.startswith("provider"):
            payload["thread"] = record.threadName

        exc = record.exc_info[1] if record.exc_info else None
        if exc is not None:
            payload["exception"] = {"type": type(exc).__name__, "message": str(exc)}
        return json.dumps(payload, default=str)


def _file_handler(path: str) -> RotatingFileHandler | None:
    directory = os.path.dirname(path)
    try:
        if directory:
            os.makedirs(directory, exist_ok=True)
        return RotatingFileHandler(
            path, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS, encoding="utf-8"
        )
    except OSError as e:
        logger.warning("Log file %s unavailable, logging to console only: %s", path, e)
        return None


def setup_logging(config) -> None:
    """Apply config.log_level, config.log_format and config.log_file to the root logger."""
    level = logging.getLevelName(config.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(level=level, format=LOG_FORMAT)
    root = logging.getLogger()
    root.setLevel(level)

    formatter = StructuredJSONFormatter() if config.log_format == "json" else logging.Formatter(LOG_FORMAT)
    for handler in root.handlers:
        handler.setFormatter(formatter)

    if config.log_file:
        handler = _file_handler(config.log_file)
        if handler is not None:
            handler.setLevel(level)
            handler.setFormatter(formatter)
            root.addHandler(handler)

    logger.info("Streamscout %s, log level %s (%s)", __version__, config.log_level, config.log_format)
