"""Lifecycle of one command run: streaming, hot/cool tracking, timeout, abort.

``CommandProcess`` holds everything that is the same for every way of
running a command. Subclasses implement ``_execute()`` (spawn, feed output,
return best-known exit details) and ``_kill()``.

States::

    IDLE -> STARTING -> STREAMING -> COMPLETING -----> FINALIZED
                            |     -> TIMED_OUT ------/
                            \\----> ABORTED ---------/

A timed-out process keeps streaming; the timeout is advisory.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from agentterm.config.schema import TerminalConfig
from agentterm.logging import get_logger
from agentterm.terminal.events import TerminalCallbacks
from agentterm.terminal.output import OutputBuffer
from agentterm.terminal.patterns import EMPTY_PATTERNS, BackgroundPatterns
from agentterm.terminal.result import CommandResult, CommandStatus, ExitDetails

if TYPE_CHECKING:
    from agentterm.terminal.handle import ProcessHandle

log = get_logger("terminal.process")

# Output that suggests a long quiet phase is normal
COMPILE_MARKERS = ("compiling", "building", "bundling", "transpiling", "generating", "starting")
# ...unless the same chunk says the phase is over
COMPILE_NULLIFIERS = (
    "compiled",
    "success",
    "finish",
    "complete",
    "succeed",
    "done",
    "end",
    "stop",
    "exit",
    "terminate",
    "error",
    "fail",
)


class ProcessState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    STREAMING = "streaming"
    COMPLETING = "completing"
    TIMED_OUT = "timed_out"
    ABORTED = "aborted"
    FINALIZED = "finalized"


class ProcessOwner(Protocol):
    """What a process reports to the terminal that owns it."""

    def process_started(self, process: CommandProcess, pid: int | None) -> None: ...

    def process_exited(self, process: CommandProcess, details: ExitDetails) -> None: ...

    def process_shell_lost(self, process: CommandProcess) -> None:
        """The shell ``process`` ran in was disposed and cannot run more commands."""


def looks_like_compiling(text: str) -> bool:
    lowered = text.lower()
    return any(word in lowered for word in COMPILE_MARKERS) and not any(
        word in lowered for word in COMPILE_NULLIFIERS
    )


class CommandProcess:
    """Base class for running one command on behalf of a Terminal.

    Args:
        owner: The terminal that owns this process and finalizes it.
        config: Engine tuning.
        callbacks: Listeners for this run.
    """

    def __init__(
        self,
        owner: ProcessOwner,
        config: TerminalConfig | None = None,
        callbacks: TerminalCallbacks | None = None,
    ) -> None:
        self._owner = owner
        self._config = config or TerminalConfig()
        self._callbacks = callbacks or TerminalCallbacks()

        self.command = ""
        self.output = OutputBuffer()
        self.state = ProcessState.IDLE
        self.is_listening = True
        self.is_hot = False
        self.aborted = False
        self.timed_out = False
        self.backgrounded = False
        self.exit_details: ExitDetails | None = None
        self.handle: ProcessHandle | None = None

        self._complete: asyncio.Future[ExitDetails] | None = None
        self._released: asyncio.Future[None] | None = None
        self._lines: asyncio.Queue[str | None] | None = None
        self._hot_timer: asyncio.TimerHandle | None = None
        self._timeout_timer: asyncio.TimerHandle | None = None
        self._flush_timer: asyncio.TimerHandle | None = None
        self._last_emit: float | None = None
        self._abort_task: asyncio.Task[None] | None = None
        self._started_at = 0.0

    # -- Public API -----------------------------------------------------------

    @property
    def finished(self) -> bool:
        return self.state is ProcessState.FINALIZED

    async def run(
        self,
        command: str,
        *,
        timeout: float = 0,
        background_patterns: BackgroundPatterns = EMPTY_PATTERNS,
    ) -> CommandResult:
        """Run ``command`` to completion and return its result.

        Args:
            command: Command line to run.
            timeout: Seconds before ``command_timeout`` fires; 0 disables it.
            background_patterns: Commands that release the caller at once.

        Returns:
            The single CommandResult of this run.
        """
        loop = asyncio.get_running_loop()
        self.command = command
        self.output.reset()
        self._complete = loop.create_future()
        self._ensure_released_future()
        self._started_at = time.perf_counter()
        if self.state is ProcessState.IDLE:
            self.state = ProcessState.STARTING

        if timeout and timeout > 0:
            self._timeout_timer = loop.call_later(timeout, self._on_timeout)

        if background_patterns.matches(command):
            log.info("Background command, not waiting: %s", command)
            self.backgrounded = True
            self._callbacks.emit("background_command", command)
            self._release()

        try:
            details = await self._execute()
        except Exception as e:
            log.exception("Command failed mid-stream: %s", command)
            self.output.append(f"\n{type(e).__name__}: {e}\n")
            details = ExitDetails(exit_code=1)

        await self._await_completion(details)
        return self._finalize()

    def released(self) -> asyncio.Future[None]:
        """Future that resolves when the caller may stop waiting."""
        return self._ensure_released_future()

    async def abort(self) -> None:
        """Kill the command. Idempotent; a no-op once finalized.

        Returns after at least one kill attempt has been made.
        """
        if self.finished:
            return
        if self._abort_task is None:
            self.aborted = True
            self.state = ProcessState.ABORTED
            log.info("Aborting: %s", self.command)
            if self._complete is None:
                # Not spawned yet; _execute() sees ``aborted`` and skips the spawn
                return
            self._abort_task = asyncio.create_task(self._kill())
        await asyncio.shield(self._abort_task)

    def continue_(self) -> None:
        """Stop emitting lines and release the caller; the command keeps running."""
        self.is_listening = False
        self._cancel_flush_timer()
        self._close_lines()
        self._release()

    def shell_execution_complete(self, details: ExitDetails) -> None:
        """Final exit details from the owning terminal. Only the first call counts."""
        if self._complete is None or self._complete.done():
            return
        self.exit_details = details
        self._complete.set_result(details)
        self._callbacks.emit("shell_execution_complete", details)

    def has_unretrieved_output(self) -> bool:
        return self.output.has_unretrieved()

    def get_unretrieved_output(self) -> str:
        """Unretrieved complete lines, or everything once the command has finished."""
        if self.finished:
            return self.output.drain_all()
        return self.output.drain()

    async def stream(self) -> AsyncIterator[str]:
        """Yield output deltas as they are emitted, until the run ends or is continued."""
        if self._lines is None:
            self._lines = asyncio.Queue()
            if self.finished or not self.is_listening:
                self._lines.put_nowait(None)
        while True:
            text = await self._lines.get()
            if text is None:
                return
            yield text

    # -- Subclass hooks -------------------------------------------------------

    async def _execute(self) -> ExitDetails:
        """Run the command, feeding output to ``_handle_output``; return fallback details."""
        raise NotImplementedError

    async def _kill(self) -> None:
        raise NotImplementedError

    async def _await_completion(self, details: ExitDetails) -> None:
        """Make sure the owner has finalized this run, reporting ``details`` if needed."""
        assert self._complete is not None
        if not self._complete.done():
            self._owner.process_exited(self, details)
        if not self._complete.done():
            # Owner no longer tracks this process (released or superseded)
            log.debug("Owner ignored exit of %r, completing locally", self.command)
            self.shell_execution_complete(details)

    def _notify_started(self, pid: int | None) -> None:
        self._owner.process_started(self, pid)
        self._callbacks.emit("shell_execution_started", pid)

    # -- Output handling ------------------------------------------------------

    def _handle_output(self, chunk: str | bytes) -> None:
        text = self.output.append(chunk)
        if not text:
            return
        if self.state is ProcessState.STARTING:
            self.state = ProcessState.STREAMING
        self._restart_hot_timer(text)
        if self.is_listening:
            self._emit_pending_lines()

    def _emit_pending_lines(self) -> None:
        loop = asyncio.get_running_loop()
        now = loop.time()
        interval = self._config.emit_interval
        if self._last_emit is not None and now - self._last_emit < interval:
            if self._flush_timer is None:
                self._flush_timer = loop.call_later(
                    interval - (now - self._last_emit), self._deferred_flush
                )
            return
        delta = self.output.drain()
        if delta:
            self._last_emit = now
            self._emit_line(delta)

    def _deferred_flush(self) -> None:
        self._flush_timer = None
        if self.is_listening and not self.finished:
            self._emit_pending_lines()

    def _emit_line(self, text: str) -> None:
        self._callbacks.emit("line", text)
        if self._lines is not None:
            self._lines.put_nowait(text)

    def _close_lines(self) -> None:
        if self._lines is not None:
            self._lines.put_nowait(None)

    # -- Timers -----------------------------------------------------------------

    def _restart_hot_timer(self, text: str) -> None:
        self.is_hot = True
        if self._hot_timer is not None:
            self._hot_timer.cancel()
        if looks_like_compiling(text):
            delay = self._config.hot_timeout_compiling
        else:
            delay = self._config.hot_timeout_normal
        self._hot_timer = asyncio.get_running_loop().call_later(delay, self._cool)

    def _cool(self) -> None:
        self._hot_timer = None
        if self.finished:
            return
        self.is_hot = False
        self._callbacks.emit("cooled")

    def _on_timeout(self) -> None:
        self._timeout_timer = None
        if self.finished or self.aborted:
            return
        self.timed_out = True
        self.state = ProcessState.TIMED_OUT
        log.warning("Command timed out (still running): %s", self.command)
        self._callbacks.emit("command_timeout", self.command)

    def _cancel_flush_timer(self) -> None:
        if self._flush_timer is not None:
            self._flush_timer.cancel()
            self._flush_timer = None

    def _cancel_timers(self) -> None:
        self._cancel_flush_timer()
        for timer in (self._hot_timer, self._timeout_timer):
            if timer is not None:
                timer.cancel()
        self._hot_timer = None
        self._timeout_timer = None

    # -- Completion -----------------------------------------------------------

    def _ensure_released_future(self) -> asyncio.Future[None]:
        if self._released is None:
            self._released = asyncio.get_running_loop().create_future()
        return self._released

    def _release(self) -> None:
        released = self._ensure_released_future()
        if released.done():
            return
        released.set_result(None)
        self._callbacks.emit("continue")

    def _finalize(self) -> CommandResult:
        self._cancel_timers()
        self.is_hot = False
        if not self.aborted:
            self.state = ProcessState.COMPLETING

        self.output.flush()
        if self.is_listening:
            remaining = self.output.drain_all()
            if remaining:
                self._emit_line(remaining)

        details = self.exit_details or ExitDetails()
        full_output = self.output.full_output
        self._callbacks.emit("completed", full_output)
        self._release()

        self.state = ProcessState.FINALIZED
        self._close_lines()
        if self.handle is not None:
            self.handle.cancel_resolution()

        if self.aborted:
            status = CommandStatus.ABORTED
        elif details.success:
            status = CommandStatus.COMPLETED
        else:
            status = CommandStatus.ERROR

        duration_ms = (time.perf_counter() - self._started_at) * 1000
        log.debug("Finalized %r: %s exit=%s (%.0fms)", self.command, status.value, details.exit_code, duration_ms)
        return CommandResult(
            command=self.command,
            exit_details=details,
            output=full_output,
            status=status,
            timed_out=self.timed_out,
            backgrounded=self.backgrounded,
            duration_ms=duration_ms,
        )
