"""Tests for logging setup."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from agentterm.config.schema import LoggingConfig
from agentterm.logging import TRACE, VERBOSE, get_logger, logger, reset_logging, resolve_level, setup_logging


class TestResolveLevel:
    def test_default_info(self) -> None:
        assert resolve_level(None) == logging.INFO
        assert resolve_level(LoggingConfig()) == logging.INFO

    def test_named_level(self) -> None:
        assert resolve_level(LoggingConfig(level="debug")) == logging.DEBUG
        assert resolve_level(LoggingConfig(level="WARN")) == logging.WARNING
        assert resolve_level(LoggingConfig(level="nonsense")) == logging.INFO

    def test_verbose_wins(self) -> None:
        config = LoggingConfig(level="ERROR", verbose=3)
        assert resolve_level(config) == VERBOSE
        assert resolve_level(LoggingConfig(verbose=0)) == logging.ERROR
        assert resolve_level(LoggingConfig(verbose=9)) == TRACE


class TestSetupLogging:
    def test_file_handler(self, tmp_path: Path) -> None:
        log_file = tmp_path / "agentterm.log"
        setup_logging(LoggingConfig(level="DEBUG", file=str(log_file)))

        get_logger("terminal").debug("spawned pid %d", 42)
        for handler in logger.handlers:
            handler.flush()

        content = log_file.read_text()
        assert "debug: spawned pid 42" in content

    def test_env_log_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        log_file = tmp_path / "env.log"
        monkeypatch.setenv("AGENTTERM_LOG", str(log_file))
        setup_logging()
        get_logger().info("hello")
        for handler in logger.handlers:
            handler.flush()
        assert "info: hello" in log_file.read_text()

    def test_second_call_is_noop(self, tmp_path: Path) -> None:
        setup_logging(LoggingConfig(file=str(tmp_path / "a.log")))
        count = len(logger.handlers)
        setup_logging(LoggingConfig(file=str(tmp_path / "b.log")))
        assert len(logger.handlers) == count
        assert not (tmp_path / "b.log").exists()

    def test_forced_stderr(self) -> None:
        setup_logging(LoggingConfig(verbose=2), force_stderr=True)
        assert any(isinstance(h, logging.StreamHandler) for h in logger.handlers)
        reset_logging()
        assert logger.handlers == []

    def test_child_logger_names(self) -> None:
        assert get_logger("terminal.kill").name == "agentterm.terminal.kill"
        assert get_logger() is logger

    def test_unopenable_file_falls_back_to_stderr(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        missing_dir = tmp_path / "missing" / "agentterm.log"
        setup_logging(LoggingConfig(file=str(missing_dir)), force_stderr=True)
        assert not any(isinstance(h, logging.FileHandler) for h in logger.handlers)
        assert any(isinstance(h, logging.StreamHandler) for h in logger.handlers)
        assert "Cannot open log file" in capsys.readouterr().err
