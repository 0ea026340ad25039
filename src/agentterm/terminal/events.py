"""Callbacks a caller can attach to a command run."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from agentterm.logging import get_logger

if TYPE_CHECKING:
    from agentterm.terminal.result import ExitDetails

log = get_logger("terminal.events")


@dataclass
class TerminalCallbacks:
    """Optional listeners for the events of one command run.

    Every callback is synchronous and optional. Exceptions raised by a
    callback are logged and dropped so a faulty listener cannot stall the
    engine.

    Attributes:
        on_line: Drained output delta (complete lines only, except for the
            final flush).
        on_completed: Full output once the command has finished.
        on_shell_execution_started: PID of the spawned process.
        on_shell_execution_complete: Final exit details, emitted once per run.
        on_command_timeout: The advisory timeout fired; the command keeps running.
        on_background_command: The command matched a background pattern and
            the caller was released.
        on_continue: The caller was released (completion, background or
            ``continue_()``).
        on_cooled: No output for the hot timeout; the process is idle.
        on_no_shell_integration: The requested provider was unavailable and
            the terminal fell back to direct spawning.
    """

    on_line: Callable[[str], Any] | None = None
    on_completed: Callable[[str], Any] | None = None
    on_shell_execution_started: Callable[[int | None], Any] | None = None
    on_shell_execution_complete: Callable[[ExitDetails], Any] | None = None
    on_command_timeout: Callable[[str], Any] | None = None
    on_background_command: Callable[[str], Any] | None = None
    on_continue: Callable[[], Any] | None = None
    on_cooled: Callable[[], Any] | None = None
    on_no_shell_integration: Callable[[str], Any] | None = None

    def emit(self, event: str, *args: Any) -> None:
        """Invoke ``on_<event>`` if set, swallowing listener errors."""
        callback = getattr(self, f"on_{event}", None)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            log.exception("Error in %s callback", event)
