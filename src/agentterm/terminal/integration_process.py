"""Command process running inside an editor-integrated shell.

The editor owns a long-lived interactive shell and hands us a chunk stream
per command. The stream carries start/end markers; completion itself is
announced separately through ``Terminal.shell_execution_ended``.
"""

from __future__ import annotations

import asyncio
import codecs
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Protocol

from agentterm.config.schema import TerminalConfig
from agentterm.logging import get_logger
from agentterm.terminal.handle import ProcessHandle
from agentterm.terminal.markers import CompletionMarkers, MarkerEvent, MarkerKind, MarkerScanner
from agentterm.terminal.process import CommandProcess, ProcessOwner, ProcessState
from agentterm.terminal.result import ExitDetails, interpret_exit_code
from agentterm.terminal.subprocess_process import KILLED_BEFORE_START

if TYPE_CHECKING:
    from agentterm.terminal.events import TerminalCallbacks
    from agentterm.terminal.termination import TerminationStrategy

log = get_logger("terminal.integration")


class ShellIntegration(Protocol):
    """An editor terminal with shell integration.

    Attributes:
        pid: PID of the interactive shell, if known.
        shell: Shell executable name, used to pick a marker wrapper.
    """

    pid: int | None
    shell: str | None

    def execute(self, command: str) -> AsyncIterator[str | bytes]:
        """Send ``command`` to the shell and stream its raw output."""
        ...

    async def send_interrupt(self) -> None:
        """Send Ctrl-C to the shell."""
        ...

    async def dispose(self) -> None:
        """Close the terminal."""
        ...


class IntegrationCommandProcess(CommandProcess):
    """Runs a command through a ``ShellIntegration``.

    Output before the start marker is prompt noise and is dropped, as is
    anything after the end marker. If no start marker ever arrives the
    shell has no working integration and all output is kept.

    Args:
        owner: Owning terminal.
        integration: The editor terminal to run in.
        config: Engine tuning.
        callbacks: Listeners for this run.
        strategy: Termination strategy override (tests).
        markers: Explicit completion markers to wrap the command with.
    """

    def __init__(
        self,
        owner: ProcessOwner,
        integration: ShellIntegration,
        config: TerminalConfig | None = None,
        callbacks: TerminalCallbacks | None = None,
        strategy: TerminationStrategy | None = None,
        markers: CompletionMarkers | None = None,
    ) -> None:
        super().__init__(owner, config, callbacks)
        self._integration = integration
        self._strategy = strategy
        self._markers = markers
        self._stream_done = asyncio.Event()
        self._started = False
        self._ended = False
        self._prelude: list[str] = []
        self._end_details: ExitDetails | None = None

    async def _execute(self) -> ExitDetails:
        try:
            return await self._consume()
        finally:
            self._stream_done.set()

    async def _consume(self) -> ExitDetails:
        if self.aborted:
            return KILLED_BEFORE_START

        if self._config.command_delay > 0:
            await asyncio.sleep(self._config.command_delay)

        command = self.command
        if self._markers is not None:
            command = self._markers.wrap(command, self._integration.shell)
        scanner = MarkerScanner(self._markers)
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        pid = self._integration.pid
        if pid:
            self.handle = ProcessHandle(pid, None, self._strategy, self._config.kill)
            self.handle.schedule_pid_resolution(self._config.pid_resolve_delay)
        self._notify_started(pid)

        async for chunk in self._integration.execute(command):
            text = decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
            for event in scanner.feed(text):
                self._on_event(event)
        for event in scanner.feed(decoder.decode(b"", final=True)):
            self._on_event(event)
        for event in scanner.finish():
            self._on_event(event)

        if not self._started and self._prelude:
            log.debug("No start marker seen, keeping all output: %s", self.command)
            self._handle_output("".join(self._prelude))
            self._prelude.clear()

        return self._end_details or ExitDetails()

    def _on_event(self, event: MarkerEvent) -> None:
        if event.kind is MarkerKind.START:
            if not self._started:
                self._started = True
                self._prelude.clear()
                if self.state is ProcessState.STARTING:
                    self.state = ProcessState.STREAMING
        elif event.kind is MarkerKind.END:
            if self._started and not self._ended:
                self._ended = True
                if event.exit_code is not None:
                    self._end_details = interpret_exit_code(event.exit_code)
        elif self._ended:
            return
        elif self._started:
            self._handle_output(event.text)
        else:
            self._prelude.append(event.text)

    async def _await_completion(self, details: ExitDetails) -> None:
        assert self._complete is not None
        if not self._complete.done() and not self.aborted:
            try:
                await asyncio.wait_for(
                    asyncio.shield(self._complete), timeout=self._config.shell_integration_timeout
                )
                return
            except asyncio.TimeoutError:
                log.warning(
                    "No completion notification within %.1fs, using stream exit: %s",
                    self._config.shell_integration_timeout,
                    self.command,
                )
        await super()._await_completion(details)

    async def _kill(self) -> None:
        try:
            await self._integration.send_interrupt()
        except Exception as e:
            log.warning("Failed to send interrupt: %s", e)

        try:
            await asyncio.wait_for(self._stream_done.wait(), timeout=self._config.abort_grace)
            log.debug("Command stopped after interrupt: %s", self.command)
            return
        except asyncio.TimeoutError:
            log.warning("Command ignored interrupt for %.1fs, killing: %s", self._config.abort_grace, self.command)

        if self.handle is not None and self.handle.resolved_pid is not None:
            # Only the command's own process; the editor's shell stays usable
            await self.handle.kill()
            return

        try:
            await self._integration.dispose()
        except Exception as e:
            log.error("Failed to dispose terminal: %s", e)
        self._owner.process_shell_lost(self)
