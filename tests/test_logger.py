"""Logger setup."""

import logging

from financeflow.core.logger import setup_logger


def test_setup_logger_attaches_handlers_once(tmp_path):
    log_file = tmp_path / "logs" / "run.log"

    first = setup_logger("financeflow_test_once", str(log_file), level="debug")
    second = setup_logger("financeflow_test_once", str(log_file))

    assert first is second
    assert first.level == logging.DEBUG
    assert len(first.handlers) == 2
    assert log_file.parent.is_dir()

    first.info("hello")
    for handler in first.handlers:
        handler.flush()
    assert "| INFO     |" in log_file.read_text(encoding="utf-8")


def test_level_falls_back_to_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("FINANCEFLOW_LOG_LEVEL", "warning")

    configured = setup_logger("financeflow_test_env", str(tmp_path / "env.log"))

    assert configured.level == logging.WARNING
