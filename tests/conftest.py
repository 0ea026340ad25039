"""Root pytest configuration for all tests."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from agentterm.config import reset_config
from agentterm.config.schema import TerminalConfig
from agentterm.logging import reset_logging
from tests.utils import fast_terminal_config

# Configure pytest-asyncio
# This is redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(scope="session")
def anyio_backend():
    """Set anyio backend to asyncio."""
    return "asyncio"


@pytest.fixture(autouse=True)
def isolated_config(tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Keep user config files and AGENTTERM_* variables out of every test."""
    home = tmp_path_factory.mktemp("config-home")
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home))
    monkeypatch.setenv("APPDATA", str(home))
    monkeypatch.delenv("AGENTTERM_LOG", raising=False)
    monkeypatch.delenv("AGENTTERM_SHELL", raising=False)
    reset_config()
    yield
    reset_config()
    reset_logging()


@pytest.fixture
def fast_config() -> TerminalConfig:
    """Terminal config with short timers."""
    return fast_terminal_config()


@pytest.fixture
def workdir(tmp_path: Path) -> str:
    return str(tmp_path)
