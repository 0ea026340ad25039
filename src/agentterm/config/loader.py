"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Environment variable overrides
- Config caching with reload support
- Conversion from dict to typed Config dataclass
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml

from agentterm.config.merge import merge_configs
from agentterm.config.paths import get_config_paths
from agentterm.config.schema import Config, KillConfig, LoggingConfig, TerminalConfig

_log = logging.getLogger("agentterm.config")

_cached_config: Config | None = None

_reload_callbacks: list[Callable[[Config], None]] = []


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning an empty dict if missing or invalid.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML as dict, or empty dict on error.
    """
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def env_overrides() -> dict[str, Any]:
    """Build a config dict from AGENTTERM_* environment variables."""
    overrides: dict[str, Any] = {}

    log_path = os.environ.get("AGENTTERM_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    shell = os.environ.get("AGENTTERM_SHELL")
    if shell:
        overrides.setdefault("terminal", {})["shell"] = shell

    return overrides


def _float(data: dict[str, Any], key: str, default: float) -> float:
    value = data.get(key, default)
    try:
        return float(value)
    except (TypeError, ValueError):
        _log.warning("Ignoring non-numeric terminal.%s: %r", key, value)
        return default


def _int(data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        _log.warning("Ignoring non-integer terminal.%s: %r", key, value)
        return default


def dict_to_terminal_config(data: dict[str, Any]) -> TerminalConfig:
    """Convert the ``terminal`` section to a TerminalConfig."""
    defaults = TerminalConfig()

    kill_data = data.get("kill", {})
    if not isinstance(kill_data, dict):
        kill_data = {}
    kill_defaults = KillConfig()
    kill = KillConfig(
        verify_delay=_float(kill_data, "verify_delay", kill_defaults.verify_delay),
        retries=max(1, _int(kill_data, "retries", kill_defaults.retries)),
        retry_backoff=_float(kill_data, "retry_backoff", kill_defaults.retry_backoff),
        command_timeout=_float(kill_data, "command_timeout", kill_defaults.command_timeout),
    )

    patterns = data.get("background_patterns", [])
    background_patterns = [p for p in patterns if isinstance(p, str) and p.strip()] if isinstance(patterns, list) else []

    return TerminalConfig(
        provider=str(data.get("provider", defaults.provider)),
        shell=data.get("shell", defaults.shell),
        default_timeout=_float(data, "default_timeout", defaults.default_timeout),
        background_patterns=background_patterns,
        emit_interval=_float(data, "emit_interval", defaults.emit_interval),
        hot_timeout_normal=_float(data, "hot_timeout_normal", defaults.hot_timeout_normal),
        hot_timeout_compiling=_float(data, "hot_timeout_compiling", defaults.hot_timeout_compiling),
        compound_finalize_timeout=_float(
            data, "compound_finalize_timeout", defaults.compound_finalize_timeout
        ),
        shell_integration_timeout=_float(
            data, "shell_integration_timeout", defaults.shell_integration_timeout
        ),
        command_delay=_float(data, "command_delay", defaults.command_delay),
        abort_grace=_float(data, "abort_grace", defaults.abort_grace),
        pid_resolve_delay=_float(data, "pid_resolve_delay", defaults.pid_resolve_delay),
        completion_markers=bool(data.get("completion_markers", defaults.completion_markers)),
        compress_progress_bar=bool(data.get("compress_progress_bar", defaults.compress_progress_bar)),
        output_line_limit=_int(data, "output_line_limit", defaults.output_line_limit),
        output_character_limit=_int(data, "output_character_limit", defaults.output_character_limit),
        kill=kill,
    )


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert merged dict to typed Config dataclass.

    Args:
        data: Merged configuration dictionary.

    Returns:
        Typed Config object.
    """
    terminal_data = data.get("terminal", {})
    terminal = dict_to_terminal_config(terminal_data if isinstance(terminal_data, dict) else {})

    log_data = data.get("logging", {})
    if not isinstance(log_data, dict):
        log_data = {}
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=log_data.get("verbose"),
        file=log_data.get("file"),
    )

    known_keys = {"terminal", "logging"}
    extra = {k: v for k, v in data.items() if k not in known_keys}

    return Config(terminal=terminal, logging=logging_config, extra=extra)


def load_config(project_root: str | None = None, reload: bool = False) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Project config (<project_root>/.agentterm/config.yaml)
    3. User config
    4. System config

    Args:
        project_root: Project directory for project-level config.
        reload: Force reload even if cached.

    Returns:
        Merged Config object.
    """
    global _cached_config

    if _cached_config is not None and not reload and project_root is None:
        return _cached_config

    configs: list[dict[str, Any]] = []

    for path in get_config_paths(project_root):
        config_data = load_yaml_file(path)
        if config_data:
            _log.debug("Loaded config from %s", path)
            configs.append(config_data)

    env_config = env_overrides()
    if env_config:
        configs.append(env_config)

    config = dict_to_config(merge_configs(*configs))

    # Cache only global config (no project_root)
    if project_root is None:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Reset cached config (tests, forced reload)."""
    global _cached_config
    _cached_config = None


def reload_config(project_root: str | None = None) -> Config:
    """Reload config from files and notify callbacks.

    Args:
        project_root: Optional project directory.

    Returns:
        The newly loaded Config.
    """
    config = load_config(project_root=project_root, reload=True)

    for callback in list(_reload_callbacks):
        try:
            callback(config)
        except Exception as e:
            _log.warning("Config reload callback error: %s", e)

    return config


def on_config_reload(callback: Callable[[Config], None]) -> Callable[[], None]:
    """Register a callback to be called when config is reloaded.

    Args:
        callback: Function to call with the new Config.

    Returns:
        A function to unregister the callback.
    """
    _reload_callbacks.append(callback)

    def unregister() -> None:
        if callback in _reload_callbacks:
            _reload_callbacks.remove(callback)

    return unregister
