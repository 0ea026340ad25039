"""Terminal command execution engine.

Runs shell commands for an agent: streams their output, detects when they
are done (including ``a && b`` compound lines), tells long-running
background commands apart from ones worth waiting for, and kills the whole
process tree on abort.

Example:
    registry = TerminalRegistry()
    terminal = registry.acquire("/path/to/project", owner_key="task-1")
    handle = terminal.run("pytest -q", TerminalCallbacks(on_line=print))
    result = await handle.result()
"""

from agentterm.terminal.compress import compress_terminal_output
from agentterm.terminal.errors import TerminalBusyError, TerminalError, UnknownProviderError
from agentterm.terminal.events import TerminalCallbacks
from agentterm.terminal.handle import ProcessHandle
from agentterm.terminal.integration_process import IntegrationCommandProcess, ShellIntegration
from agentterm.terminal.markers import CompletionMarkers, MarkerScanner
from agentterm.terminal.process import CommandProcess, ProcessState
from agentterm.terminal.registry import TerminalRegistry
from agentterm.terminal.result import (
    CommandResult,
    CommandStatus,
    CompletionRecord,
    ExitDetails,
    interpret_exit_code,
)
from agentterm.terminal.services import ServiceInfo, ServiceManager, ServiceStatus
from agentterm.terminal.subprocess_process import SubprocessCommandProcess
from agentterm.terminal.terminal import RunHandle, Terminal

__all__ = [
    # Registry and terminals
    "TerminalRegistry",
    "Terminal",
    "RunHandle",
    "TerminalCallbacks",
    # Results
    "CommandResult",
    "CommandStatus",
    "CompletionRecord",
    "ExitDetails",
    "interpret_exit_code",
    # Processes
    "CommandProcess",
    "ProcessState",
    "SubprocessCommandProcess",
    "IntegrationCommandProcess",
    "ShellIntegration",
    "ProcessHandle",
    # Markers and output
    "CompletionMarkers",
    "MarkerScanner",
    "compress_terminal_output",
    # Services
    "ServiceManager",
    "ServiceInfo",
    "ServiceStatus",
    # Errors
    "TerminalError",
    "TerminalBusyError",
    "UnknownProviderError",
]
