"""Tests for logging configuration and console helpers."""

import json
import logging
import logging.handlers
from unittest.mock import PropertyMock, patch

import pytest
import structlog

from cpu_energy_exporter import logging as console
from cpu_energy_exporter.config import Config


@pytest.fixture(autouse=True)
def restore_logging():
    """Put stdlib and structlog logging back the way they were."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


def test_configure_sets_level_and_console_handler():
    """configure() installs a single stderr handler at the configured level."""
    cfg = Config()
    cfg.logging.level = "warning"

    console.configure(cfg)

    root = logging.getLogger()
    assert root.level == logging.WARNING
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, structlog.stdlib.ProcessorFormatter)


def test_configure_replaces_existing_handlers():
    """Calling configure() twice does not duplicate handlers."""
    cfg = Config()

    console.configure(cfg)
    console.configure(cfg)

    assert len(logging.getLogger().handlers) == 1


def test_json_file_handler(tmp_path):
    """With json_file enabled, events are written as JSON lines with a source."""
    cfg = Config()
    cfg.logging.json_file = True

    with patch.object(Config, "state_dir", new_callable=PropertyMock, return_value=tmp_path):
        console.configure(cfg)
        log_path = cfg.log_path

    file_handlers = [
        h
        for h in logging.getLogger().handlers
        if isinstance(h, logging.handlers.RotatingFileHandler)
    ]
    assert len(file_handlers) == 1

    structlog.get_logger("test").info("pass_completed", processes=3)
    file_handlers[0].flush()

    records = [json.loads(line) for line in log_path.read_text().splitlines()]
    assert records[-1]["event"] == "pass_completed"
    assert records[-1]["processes"] == 3
    assert records[-1]["level"] == "info"
    assert records[-1]["source"] == "exporter"


def test_debug_events_filtered_at_info(tmp_path):
    """Events below the configured level are dropped."""
    cfg = Config()
    cfg.logging.json_file = True

    with patch.object(Config, "state_dir", new_callable=PropertyMock, return_value=tmp_path):
        console.configure(cfg)
        log_path = cfg.log_path

    logger = structlog.get_logger("test")
    logger.debug("process_ticks", pid=1)
    logger.info("daemon_started")
    for handler in logging.getLogger().handlers:
        handler.flush()

    events = [json.loads(line)["event"] for line in log_path.read_text().splitlines()]
    assert events == ["daemon_started"]


def test_error_helpers_write_to_stderr(capsys):
    """Failure helpers print to stderr, success helpers to stdout."""
    console.startup_failed("no cores")
    console.exporter_stopped()

    captured = capsys.readouterr()
    assert "Startup failed: no cores" in captured.err
    assert "Exporter stopped" in captured.out
    assert "Startup failed" not in captured.out
