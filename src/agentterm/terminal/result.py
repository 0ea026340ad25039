"""Exit details and command result dataclasses."""

from __future__ import annotations

import signal as _signal
import time
from dataclasses import dataclass, field
from enum import Enum

# Signals whose default action may dump core
_CORE_DUMP_SIGNALS = frozenset(
    {
        "SIGQUIT",
        "SIGILL",
        "SIGABRT",
        "SIGFPE",
        "SIGSEGV",
        "SIGBUS",
        "SIGSYS",
        "SIGTRAP",
        "SIGXCPU",
        "SIGXFSZ",
    }
)


def signal_name(signum: int) -> str:
    """Name for a signal number, falling back to ``SIG<n>`` when unknown."""
    try:
        return _signal.Signals(signum).name
    except ValueError:
        return f"SIG{signum}"


@dataclass(frozen=True)
class ExitDetails:
    """How a command ended.

    Attributes:
        exit_code: Raw exit code, or None if the process was killed before
            reporting one.
        signal: Signal number if the process was terminated by a signal.
        signal_name: Signal name (e.g. "SIGKILL").
        core_dump_possible: True if the signal's default action dumps core.
    """

    exit_code: int | None = None
    signal: int | None = None
    signal_name: str | None = None
    core_dump_possible: bool | None = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and self.signal is None

    @classmethod
    def from_signal(cls, signum: int, exit_code: int | None = None) -> ExitDetails:
        name = signal_name(signum)
        return cls(
            exit_code=exit_code,
            signal=signum,
            signal_name=name,
            core_dump_possible=name in _CORE_DUMP_SIGNALS,
        )


def interpret_exit_code(code: int | None) -> ExitDetails:
    """Interpret a raw process exit code.

    Negative codes are how asyncio reports death by signal on POSIX; codes
    above 128 are how a shell reports that its child died by signal ``code - 128``.

    Args:
        code: Exit code as reported by the process or the shell.

    Returns:
        ExitDetails with signal information filled in where it applies.
    """
    if code is None:
        return ExitDetails()
    if code < 0:
        return ExitDetails.from_signal(-code, exit_code=code)
    if 128 < code < 256:
        return ExitDetails.from_signal(code - 128, exit_code=code)
    return ExitDetails(exit_code=code)


class CommandStatus(str, Enum):
    """Final status of a command run."""

    COMPLETED = "completed"
    ERROR = "error"
    ABORTED = "aborted"


@dataclass
class CommandResult:
    """Result of one ``Terminal.run()``.

    Attributes:
        command: The command line that was run.
        exit_details: How the command ended.
        output: Full output (stdout and stderr merged).
        status: "completed", "error" or "aborted".
        timed_out: True if the advisory timeout fired while running.
        backgrounded: True if the caller was released early by a
            background pattern.
        duration_ms: Wall time from start to finalization.
    """

    command: str
    exit_details: ExitDetails
    output: str
    status: CommandStatus
    timed_out: bool = False
    backgrounded: bool = False
    duration_ms: float = 0.0

    @property
    def exit_code(self) -> int | None:
        return self.exit_details.exit_code

    @property
    def success(self) -> bool:
        """True if the command completed with exit code 0."""
        return self.status == CommandStatus.COMPLETED and self.exit_details.success

    def __repr__(self) -> str:
        """Concise repr for display."""
        if self.success:
            lines = self.output.count("\n") + 1 if self.output else 0
            return f"<CommandResult ok, {lines} lines>"
        if self.exit_details.signal_name:
            return f"<CommandResult {self.status.value}, signal={self.exit_details.signal_name}>"
        return f"<CommandResult {self.status.value}, exit={self.exit_code}>"


@dataclass(frozen=True)
class CompletionRecord:
    """One sub-command completion of a compound command."""

    exit_details: ExitDetails
    command: str
    timestamp: float = field(default_factory=time.time)
