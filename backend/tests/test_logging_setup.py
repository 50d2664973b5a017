"""Tests for logging_setup.py."""

import json
import logging
import sys

import pytest

from config import normalize_config
from logging_setup import StructuredJSONFormatter, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


def test_json_formatter():
    record = logging.LogRecord("aggregator", logging.WARNING, __file__, 10, "Provider %s timed out", ("c",), None)
    record.threadName = "provider_2"
    entry = json.loads(StructuredJSONFormatter().format(record))
    assert entry["level"] == "WARNING"
    assert entry["logger"] == "aggregator"
    assert entry["message"] == "Provider c timed out"
    assert entry["thread"] == "provider_2"


def test_json_formatter_exception():
    try:
        raise ValueError("bad payload")
    except ValueError:
        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
    entry = json.loads(StructuredJSONFormatter().format(record))
    assert entry["exception"] == {"type": "ValueError", "message": "bad payload"}


def test_setup_logging_level_and_file(tmp_path, restore_root_logger):
    log_file = tmp_path / "logs" / "streamscout.log"
    cfg = normalize_config({"logLevel": "debug", "logFormat": "json", "logFile": str(log_file)})
    setup_logging(cfg)

    root = restore_root_logger
    assert root.level == logging.DEBUG
    assert log_file.exists()
    file_handlers = [h for h in root.handlers if getattr(h, "baseFilename", None) == str(log_file)]
    assert len(file_handlers) == 1
    assert isinstance(file_handlers[0].formatter, StructuredJSONFormatter)
