"""Tests for hemisphere.logging_config."""
import json
import logging

import pytest

from hemisphere.logging_config import JSONFormatter, configure_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def test_json_formatter_emits_one_line():
    record = logging.LogRecord("hemisphere.services", logging.INFO, __file__, 1,
                               "Checked in %s", ("17",), None)
    entry = json.loads(JSONFormatter().format(record))
    assert entry["level"] == "INFO"
    assert entry["logger"] == "hemisphere.services"
    assert entry["message"] == "Checked in 17"


def test_configure_logging_uses_arguments(restore_root_logger):
    configure_logging("warning", "json")
    assert restore_root_logger.level == logging.WARNING
    assert len(restore_root_logger.handlers) == 1
    assert isinstance(restore_root_logger.handlers[0].formatter, JSONFormatter)


def test_configure_logging_reads_environment(restore_root_logger, monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("LOG_FORMAT", "text")
    configure_logging()
    assert restore_root_logger.level == logging.DEBUG
    assert not isinstance(restore_root_logger.handlers[0].formatter, JSONFormatter)
