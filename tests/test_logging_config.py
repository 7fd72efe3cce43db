"""Tests for logging setup."""

import json
import logging

import pytest

from buildlens import logging_config
from buildlens.config import settings
from buildlens.logging_config import setup_logging


@pytest.fixture
def file_logging(monkeypatch, tmp_path):
    """Log to a temporary directory only, restoring the root logger afterwards."""
    monkeypatch.setattr(settings, "log_dir", str(tmp_path))
    monkeypatch.setattr(settings, "log_file_enabled", True)
    monkeypatch.setattr(settings, "log_console_enabled", False)
    monkeypatch.setattr(logging_config, "_configured_contexts", set())

    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield tmp_path
    for handler in root.handlers[:]:
        if handler not in handlers:
            handler.close()
            root.removeHandler(handler)
    root.setLevel(level)


def test_json_format_emits_one_object_per_line(file_logging, monkeypatch):
    monkeypatch.setattr(settings, "log_format", "json")

    setup_logging(context="worker", level="INFO")
    logging.getLogger("buildlens.sync").info("Purged 3 jobs")

    lines = (file_logging / "worker.log").read_text().splitlines()
    record = json.loads(lines[-1])
    assert record["event"] == "Purged 3 jobs"
    assert record["level"] == "info"
    assert record["logger"] == "buildlens.sync"
    assert "timestamp" in record


def test_json_format_includes_exceptions(file_logging, monkeypatch):
    monkeypatch.setattr(settings, "log_format", "json")
    setup_logging(context="worker", level="INFO")

    try:
        raise RuntimeError("jenkins down")
    except RuntimeError:
        logging.getLogger("buildlens.sync").exception("Sync failed")

    record = json.loads((file_logging / "worker.log").read_text().splitlines()[-1])
    assert record["event"] == "Sync failed"
    assert "RuntimeError: jenkins down" in record["exception"]


def test_standard_format(file_logging, monkeypatch):
    monkeypatch.setattr(settings, "log_format", "standard")

    setup_logging(context="cli", level="INFO")
    logging.getLogger("buildlens.cli").warning("Refusing to purge")

    line = (file_logging / "cli.log").read_text().splitlines()[-1]
    assert "[WARNING] buildlens.cli: Refusing to purge" in line


def test_setup_is_idempotent_per_context(file_logging):
    root = logging.getLogger()
    setup_logging(context="api")
    count = len(root.handlers)

    setup_logging(context="api")

    assert len(root.handlers) == count
