"""Exceptions raised for caller misuse of the terminal engine.

Failures of the commands themselves never raise: they surface as a
``CommandResult`` with an error status.
"""

from __future__ import annotations


class TerminalError(Exception):
    """Base class for terminal engine errors."""


class TerminalBusyError(TerminalError):
    """Raised when ``run()`` is called on a terminal that is still busy."""

    def __init__(self, terminal_id: int, command: str) -> None:
        self.terminal_id = terminal_id
        self.command = command
        super().__init__(f"Terminal {terminal_id} is busy running {command!r}")


class UnknownProviderError(TerminalError):
    """Raised when a terminal is requested for a provider that does not exist."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Unknown terminal provider: {provider!r}")
