"""Configuration management for agentterm.

Provides hierarchical YAML-based configuration with:
- System-level config (/etc/agentterm/ or %PROGRAMDATA%)
- User-level config (~/.config/agentterm/, ~/.agentterm/ or %APPDATA%)
- Project-level config (<project_root>/.agentterm/)
- Environment variable overrides (highest priority)

Example usage:
    from agentterm.config import load_config

    config = load_config(project_root="/path/to/project")
    print(config.terminal.background_patterns)
"""

from agentterm.config.loader import (
    get_config,
    load_config,
    on_config_reload,
    reload_config,
    reset_config,
)
from agentterm.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from agentterm.config.schema import (
    Config,
    KillConfig,
    LoggingConfig,
    TerminalConfig,
)
from agentterm.config.watcher import ConfigWatcher

__all__ = [
    # Main API
    "Config",
    "load_config",
    "get_config",
    "reload_config",
    "reset_config",
    "on_config_reload",
    # Schema types
    "TerminalConfig",
    "KillConfig",
    "LoggingConfig",
    # Path utilities
    "get_config_paths",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
    # Watcher
    "ConfigWatcher",
]
