"""Configuration schema dataclasses for agentterm.

Defines the structure of configuration at all levels (system, user, project).
All fields have defaults so partial configs merge together cleanly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class KillConfig:
    """Process-tree termination tuning.

    Example config.yaml:
        terminal:
          kill:
            verify_delay: 0.5
            retries: 3
            retry_backoff: 0.5
    """

    verify_delay: float = 0.5  # Seconds before the post-kill liveness probe
    retries: int = 3  # taskkill attempts on Windows
    retry_backoff: float = 0.5  # Seconds between taskkill attempts
    command_timeout: float = 2.0  # Per-attempt timeout for taskkill


@dataclass
class TerminalConfig:
    """Command execution engine configuration.

    Example config.yaml:
        terminal:
          provider: subprocess
          default_timeout: 0
          background_patterns:
            - "npm run dev"
            - "python -m http.server*"
          compound_finalize_timeout: 10
    """

    provider: str = "subprocess"  # "subprocess" or "integration"
    shell: str | None = None  # Shell executable for direct spawning (None = platform default)
    default_timeout: float = 0  # Seconds; 0 disables the advisory timeout
    background_patterns: list[str] = field(default_factory=list)

    emit_interval: float = 0.5  # Minimum seconds between on_line flushes
    hot_timeout_normal: float = 2.0  # Idle seconds before a process cools
    hot_timeout_compiling: float = 15.0  # Idle seconds while compiling/building

    compound_finalize_timeout: float = 10.0  # Seconds to wait for missing sub-completions
    shell_integration_timeout: float = 5.0  # Seconds to wait for the end notification
    command_delay: float = 0.0  # Seconds to wait before sending a command to the shell
    abort_grace: float = 5.0  # Seconds between interrupt and forced kill
    pid_resolve_delay: float = 0.1  # Seconds before looking up a shell's child PID

    completion_markers: bool = False  # Wrap integration commands in explicit markers
    compress_progress_bar: bool = True  # Collapse \r / \b rewrites when compressing output
    output_line_limit: int = 500
    output_character_limit: int = 50000

    kill: KillConfig = field(default_factory=KillConfig)


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, takes precedence over level
    file: str | None = None  # Log file path


@dataclass
class Config:
    """Root configuration object.

    Represents the merged configuration from all sources
    (system, user, project, environment).
    """

    terminal: TerminalConfig = field(default_factory=TerminalConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Unknown top-level keys, kept for extensions
    extra: dict[str, Any] = field(default_factory=dict)
