"""agentterm: shell command execution engine for automated agents."""

__version__ = "0.1.0"

from agentterm.config import Config, get_config, load_config
from agentterm.terminal import (
    CommandResult,
    ExitDetails,
    RunHandle,
    Terminal,
    TerminalCallbacks,
    TerminalRegistry,
)

__all__ = [
    "__version__",
    # Terminal engine
    "TerminalRegistry",
    "Terminal",
    "RunHandle",
    "TerminalCallbacks",
    "CommandResult",
    "ExitDetails",
    # Config
    "Config",
    "load_config",
    "get_config",
]
