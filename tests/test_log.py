"""Tests for logging setup."""

import json
import logging

import pytest
import structlog

from pairbot.log import get_logger, setup_logging


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()


def test_json_output(capsys):
    setup_logging("INFO", "json")
    get_logger("pairbot.test").info("qr_issued", format="PNG")
    line = capsys.readouterr().err.strip().splitlines()[-1]
    record = json.loads(line)
    assert record["event"] == "qr_issued"
    assert record["format"] == "PNG"
    assert record["level"] == "info"


def test_level_filter(capsys):
    setup_logging("WARNING")
    get_logger("pairbot.test").info("hidden_event")
    assert "hidden_event" not in capsys.readouterr().err


def test_library_loggers_quiet_outside_debug():
    setup_logging("INFO")
    assert logging.getLogger("apscheduler").level == logging.WARNING
    setup_logging("DEBUG")
    assert logging.getLogger("apscheduler").level == logging.DEBUG
