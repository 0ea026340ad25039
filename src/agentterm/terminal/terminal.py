"""A terminal: one command at a time, with compound-command bookkeeping."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Generator, Iterable
from typing import TYPE_CHECKING, Any

from agentterm.config.schema import TerminalConfig
from agentterm.logging import get_logger
from agentterm.terminal.command_parser import count_compound_segments
from agentterm.terminal.errors import TerminalBusyError, TerminalError, UnknownProviderError
from agentterm.terminal.events import TerminalCallbacks
from agentterm.terminal.integration_process import IntegrationCommandProcess, ShellIntegration
from agentterm.terminal.markers import CompletionMarkers
from agentterm.terminal.patterns import BackgroundPatterns
from agentterm.terminal.process import CommandProcess
from agentterm.terminal.result import CommandResult, CompletionRecord, ExitDetails, interpret_exit_code
from agentterm.terminal.subprocess_process import SubprocessCommandProcess

if TYPE_CHECKING:
    from agentterm.terminal.termination import TerminationStrategy

log = get_logger("terminal")

PROVIDER_SUBPROCESS = "subprocess"
PROVIDER_INTEGRATION = "integration"
PROVIDERS = (PROVIDER_SUBPROCESS, PROVIDER_INTEGRATION)


class RunHandle:
    """Caller's view of one ``Terminal.run()``.

    ``await handle`` waits until the caller is released: the command
    completed, matched a background pattern, or ``continue_()`` was called.
    ``await handle.result()`` waits for the command itself to finish.
    """

    def __init__(self, process: CommandProcess, task: asyncio.Task[CommandResult]) -> None:
        self.process = process
        self._task = task

    @property
    def command(self) -> str:
        return self.process.command

    @property
    def done(self) -> bool:
        return self._task.done()

    def __await__(self) -> Generator[Any, None, None]:
        return self._wait_released().__await__()

    async def _wait_released(self) -> None:
        released = self.process.released()
        await asyncio.wait([released, self._task], return_when=asyncio.FIRST_COMPLETED)
        if self._task.done() and not self._task.cancelled():
            # Surface an unexpected failure of the run itself
            self._task.result()

    async def result(self) -> CommandResult:
        return await asyncio.shield(self._task)

    async def abort(self) -> CommandResult:
        """Kill the command tree and wait for the final result."""
        await self.process.abort()
        return await self.result()

    def continue_(self) -> None:
        self.process.continue_()

    def stream(self) -> AsyncIterator[str]:
        return self.process.stream()

    def __repr__(self) -> str:
        return f"<RunHandle {self.command!r} state={self.process.state.value}>"


class Terminal:
    """Runs commands one at a time in a fixed working directory.

    ``busy`` is True from ``run()`` until the command is finalized; it is
    the only signal for whether another command may start here. For the
    integration provider a compound command line (``a && b; c``) is
    finalized once every sub-command has reported, or when the compound
    finalize timeout expires after the last report.

    Args:
        terminal_id: Registry-assigned id.
        cwd: Working directory for every command.
        provider: "subprocess" or "integration".
        config: Engine tuning.
        integration: Editor terminal; required for the integration provider.
        strategy: Termination strategy override (tests).
    """

    def __init__(
        self,
        terminal_id: int,
        cwd: str,
        *,
        provider: str = PROVIDER_SUBPROCESS,
        config: TerminalConfig | None = None,
        integration: ShellIntegration | None = None,
        strategy: TerminationStrategy | None = None,
    ) -> None:
        if provider not in PROVIDERS:
            raise UnknownProviderError(provider)
        if provider == PROVIDER_INTEGRATION and integration is None:
            raise TerminalError("The integration provider needs a ShellIntegration")

        self.id = terminal_id
        self.provider = provider
        self.initial_cwd = cwd
        self.config = config or TerminalConfig()
        self.integration = integration
        self._strategy = strategy

        self.busy = False
        self.running = False
        self.task_id: str | None = None
        self.process: CommandProcess | None = None
        self.run_handle: RunHandle | None = None
        self.completed_processes: list[CommandProcess] = []

        self.is_compound_command = False
        self.expected_compound_process_count = 0
        self.compound_process_completions: list[CompletionRecord] = []
        self._compound_timer: asyncio.TimerHandle | None = None

        self._closed = False

    def __repr__(self) -> str:
        return f"<Terminal {self.provider}/{self.id} cwd={self.initial_cwd!r} busy={self.busy}>"

    @property
    def closed(self) -> bool:
        return self._closed

    def get_current_working_directory(self) -> str:
        return self.initial_cwd

    # -- Running commands -------------------------------------------------------

    def run(
        self,
        command: str,
        callbacks: TerminalCallbacks | None = None,
        *,
        timeout: float | None = None,
        background_patterns: Iterable[str] | None = None,
    ) -> RunHandle:
        """Start ``command`` and return a handle to it.

        Must be called from a running event loop.

        Args:
            command: Command line to run.
            callbacks: Listeners for this run.
            timeout: Advisory timeout in seconds; None uses the configured
                default, 0 disables it.
            background_patterns: Extra patterns (beyond the configured ones)
                that release the caller immediately.

        Returns:
            RunHandle for the new run.

        Raises:
            TerminalBusyError: A command is already running here.
            TerminalError: The terminal has been disposed.
        """
        if self._closed:
            raise TerminalError(f"Terminal {self.id} is disposed")
        if self.busy:
            raise TerminalBusyError(self.id, self.get_last_command())

        patterns = BackgroundPatterns.compile(
            [*self.config.background_patterns, *(background_patterns or ())]
        )
        if timeout is None:
            timeout = self.config.default_timeout

        process = self._create_process(callbacks)
        process.command = command
        self.busy = True
        self.process = process

        if self.provider == PROVIDER_INTEGRATION:
            self.detect_compound_command(command)
        else:
            self._reset_compound_state()

        log.info("Terminal %d running: %s", self.id, command)
        task = asyncio.create_task(
            process.run(command, timeout=timeout, background_patterns=patterns),
            name=f"terminal-{self.id}",
        )
        self.run_handle = RunHandle(process, task)
        return self.run_handle

    def _create_process(self, callbacks: TerminalCallbacks | None) -> CommandProcess:
        if self.provider == PROVIDER_INTEGRATION:
            assert self.integration is not None
            markers = CompletionMarkers() if self.config.completion_markers else None
            return IntegrationCommandProcess(
                self, self.integration, self.config, callbacks, self._strategy, markers
            )
        return SubprocessCommandProcess(self, self.initial_cwd, self.config, callbacks, self._strategy)

    async def abort(self) -> None:
        """Abort the active command, if any, and wait for its result."""
        handle = self.run_handle
        if handle is not None and not handle.done:
            await handle.abort()

    # -- Reports from the active process ------------------------------------------

    def process_started(self, process: CommandProcess, pid: int | None) -> None:
        if process is not self.process:
            return
        self.running = True
        log.debug("Terminal %d started pid %s", self.id, pid)

    def process_exited(self, process: CommandProcess, details: ExitDetails) -> None:
        """The active process saw its output stream end with ``details``."""
        if process is not self.process:
            log.debug("Terminal %d ignoring exit of stale process %r", self.id, process.command)
            return
        if self.is_compound_command and self.compound_process_completions:
            self.finalize_compound_command()
        else:
            self.shell_execution_complete(details, process=process)

    def process_shell_lost(self, process: CommandProcess) -> None:
        """The integration shell is gone; take this terminal out of the pool."""
        if not self._closed:
            log.warning("Terminal %d: shell lost while aborting %r, closing", self.id, process.command)
        self._closed = True

    def shell_execution_ended(self, exit_code: int | None, command: str | None = None) -> None:
        """Completion notification from the shell integration."""
        process = self.process
        if process is None:
            log.debug("Terminal %d: execution end with no active process", self.id)
            return
        if not self.running:
            log.warning("Terminal %d: execution end before start for %r", self.id, process.command)

        details = interpret_exit_code(exit_code)
        if self.is_compound_command:
            self.add_compound_process_completion(details, command or process.command)
        else:
            self.shell_execution_complete(details)

    # -- Compound commands ------------------------------------------------------------

    def detect_compound_command(self, command: str) -> None:
        """Count the top-level ``&&`` / ``;`` sub-commands of ``command``."""
        self._reset_compound_state()
        count = count_compound_segments(command)
        self.expected_compound_process_count = count
        self.is_compound_command = count > 1
        if self.is_compound_command:
            log.info("Terminal %d: compound command with %d parts: %s", self.id, count, command)

    def add_compound_process_completion(self, exit_details: ExitDetails, command: str) -> None:
        if not self.is_compound_command:
            log.warning("Terminal %d: compound completion while not tracking one", self.id)
            return

        self.compound_process_completions.append(CompletionRecord(exit_details, command))
        log.info(
            "Terminal %d: compound completion %d/%d: %s",
            self.id,
            len(self.compound_process_completions),
            self.expected_compound_process_count,
            command,
        )

        if self.all_compound_processes_complete():
            self.finalize_compound_command()
            return

        self._cancel_compound_timer()
        self._compound_timer = asyncio.get_running_loop().call_later(
            self.config.compound_finalize_timeout,
            self._on_compound_timeout,
            self.process,
        )

    def all_compound_processes_complete(self) -> bool:
        if not self.is_compound_command:
            return True
        return len(self.compound_process_completions) >= self.expected_compound_process_count

    def get_compound_process_outputs(self) -> str:
        """Summary of each sub-command's exit."""
        lines: list[str] = []
        for record in self.compound_process_completions:
            lines.append(f"[Command: {record.command}]")
            lines.append(f"[Exit Code: {record.exit_details.exit_code}]")
            if record.exit_details.signal_name:
                lines.append(f"[Signal: {record.exit_details.signal_name}]")
        return "\n".join(lines)

    def _on_compound_timeout(self, process: CommandProcess | None) -> None:
        self._compound_timer = None
        if process is not self.process or not self.is_compound_command:
            return
        log.warning(
            "Terminal %d: compound command timed out with %d/%d completions",
            self.id,
            len(self.compound_process_completions),
            self.expected_compound_process_count,
        )
        self.finalize_compound_command()

    def finalize_compound_command(self) -> None:
        """Finalize with the last sub-command's exit details."""
        self._cancel_compound_timer()
        if self.compound_process_completions:
            final = self.compound_process_completions[-1].exit_details
        else:
            final = ExitDetails(exit_code=0)
        was_compound = self.is_compound_command
        log.info(
            "Terminal %d: finalizing compound command with %d completions",
            self.id,
            len(self.compound_process_completions),
        )
        self._reset_compound_state()
        if was_compound:
            self.shell_execution_complete(final)

    def _cancel_compound_timer(self) -> None:
        if self._compound_timer is not None:
            self._compound_timer.cancel()
            self._compound_timer = None

    def _reset_compound_state(self) -> None:
        self._cancel_compound_timer()
        self.is_compound_command = False
        self.expected_compound_process_count = 0
        self.compound_process_completions = []

    # -- Finalization -----------------------------------------------------------------

    def shell_execution_complete(
        self, exit_details: ExitDetails, *, process: CommandProcess | None = None
    ) -> None:
        """Finalize the active command. The only place ``busy`` is cleared.

        Args:
            exit_details: Final exit details of the command.
            process: If given, only finalize when it is still the active process.
        """
        target = self.process
        if target is None:
            log.debug("Terminal %d: duplicate completion ignored", self.id)
            return
        if process is not None and process is not target:
            log.debug("Terminal %d: completion for stale process ignored", self.id)
            return

        self._reset_compound_state()
        self.busy = False
        self.running = False
        self.process = None
        if target.has_unretrieved_output():
            # Most recent first
            self.completed_processes.insert(0, target)
        log.debug("Terminal %d completed: exit=%s", self.id, exit_details.exit_code)
        target.shell_execution_complete(exit_details)

    # -- Output retrieval -------------------------------------------------------------

    def get_last_command(self) -> str:
        if self.process is not None:
            return self.process.command
        if self.completed_processes:
            return self.completed_processes[0].command
        return ""

    def clean_completed_process_queue(self) -> None:
        self.completed_processes = [p for p in self.completed_processes if p.has_unretrieved_output()]

    def get_processes_with_output(self) -> list[CommandProcess]:
        self.clean_completed_process_queue()
        return list(self.completed_processes)

    def get_unretrieved_output(self) -> str:
        """Unretrieved output of completed processes (oldest first), then the active one."""
        parts = [p.get_unretrieved_output() for p in reversed(self.completed_processes)]
        if self.process is not None:
            parts.append(self.process.get_unretrieved_output())
        self.clean_completed_process_queue()
        return "".join(parts)

    # -- Teardown ------------------------------------------------------------------

    def release(self) -> CommandProcess | None:
        """Detach from the current owner.

        Clears busy and compound state synchronously and returns the
        process that was active, which the caller must abort.
        """
        process = self.process
        self.task_id = None
        self.busy = False
        self.running = False
        self.process = None
        self._reset_compound_state()
        return process

    async def dispose(self) -> None:
        if self._closed:
            return
        self._closed = True
        process = self.release()
        if process is not None:
            await process.abort()
        if self.integration is not None:
            try:
                await self.integration.dispose()
            except Exception as e:
                log.warning("Terminal %d: error disposing integration: %s", self.id, e)
        log.debug("Terminal %d disposed", self.id)
