"""Direct-spawn command process: the command runs in its own shell subprocess."""

from __future__ import annotations

import asyncio
import contextlib
import os
import subprocess
import sys
from typing import TYPE_CHECKING, Any

from agentterm.config.schema import TerminalConfig
from agentterm.logging import get_logger
from agentterm.terminal.handle import ProcessHandle
from agentterm.terminal.process import CommandProcess, ProcessOwner
from agentterm.terminal.result import ExitDetails, interpret_exit_code

if TYPE_CHECKING:
    from agentterm.terminal.events import TerminalCallbacks
    from agentterm.terminal.termination import TerminationStrategy

log = get_logger("terminal.subprocess")

_READ_SIZE = 4096

# Synthetic result for a command aborted before it was spawned
KILLED_BEFORE_START = ExitDetails(exit_code=None, signal=9, signal_name="SIGKILL", core_dump_possible=False)


def _spawn_kwargs() -> dict[str, Any]:
    """Put the shell in its own process group so the whole tree can be killed at once."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


class SubprocessCommandProcess(CommandProcess):
    """Runs a command with ``asyncio.create_subprocess_shell``.

    stdout and stderr are merged into one stream. The shell reports a
    single exit for the whole command line, so compound commands are not
    aggregated.

    Args:
        owner: Owning terminal.
        cwd: Working directory for the command.
        config: Engine tuning (shell executable, abort grace, ...).
        callbacks: Listeners for this run.
        strategy: Termination strategy override (tests).
        env: Extra environment variables.
    """

    def __init__(
        self,
        owner: ProcessOwner,
        cwd: str,
        config: TerminalConfig | None = None,
        callbacks: TerminalCallbacks | None = None,
        strategy: TerminationStrategy | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        super().__init__(owner, config, callbacks)
        self._cwd = cwd
        self._strategy = strategy
        self._env = env
        self._process: asyncio.subprocess.Process | None = None
        self._reader: asyncio.Task[None] | None = None
        self._spawn_settled = asyncio.Event()

    def _build_env(self) -> dict[str, str]:
        env = os.environ.copy()
        env.update({"LANG": "en_US.UTF-8", "LC_ALL": "en_US.UTF-8"})
        if self._env:
            env.update(self._env)
        return env

    async def _execute(self) -> ExitDetails:
        try:
            proc = await self._spawn()
        finally:
            self._spawn_settled.set()
        if isinstance(proc, ExitDetails):
            return proc

        assert proc.stdout is not None
        self._reader = asyncio.create_task(self._read(proc.stdout))
        await asyncio.wait([self._reader])

        if self.aborted:
            try:
                await asyncio.wait_for(proc.wait(), timeout=self._config.abort_grace)
            except asyncio.TimeoutError:
                log.warning("pid %d survived tree kill, killing shell directly", proc.pid)
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()
        else:
            await proc.wait()

        return interpret_exit_code(proc.returncode)

    async def _spawn(self) -> asyncio.subprocess.Process | ExitDetails:
        """Start the shell, or return the exit details standing in for a failed start."""
        if self.aborted:
            return KILLED_BEFORE_START

        try:
            self._process = await asyncio.create_subprocess_shell(
                self.command,
                stdin=subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=self._cwd,
                env=self._build_env(),
                executable=self._config.shell,
                **_spawn_kwargs(),
            )
        except FileNotFoundError as e:
            # Missing shell executable or working directory
            log.error("Spawn failed, not found: %s (%s)", self.command, e)
            self._handle_output(f"Command not found: {e}\n")
            return ExitDetails(exit_code=127)
        except PermissionError as e:
            log.error("Spawn failed, permission denied: %s (%s)", self.command, e)
            self._handle_output(f"Permission denied: {e}\n")
            return ExitDetails(exit_code=126)
        except OSError as e:
            log.error("Spawn failed: %s (%s)", self.command, e)
            self._handle_output(f"OS error: {e}\n")
            return ExitDetails(exit_code=1)

        proc = self._process
        self.handle = ProcessHandle(proc.pid, proc, self._strategy, self._config.kill)
        self.handle.schedule_pid_resolution(self._config.pid_resolve_delay)
        log.debug("Spawned pid %d: %s", proc.pid, self.command)
        self._notify_started(proc.pid)
        return proc

    async def _read(self, stream: asyncio.StreamReader) -> None:
        try:
            while True:
                chunk = await stream.read(_READ_SIZE)
                if not chunk:
                    break
                self._handle_output(chunk)
        except asyncio.CancelledError:
            log.debug("Reader cancelled: %s", self.command)
        except Exception as e:
            log.error("Error reading output of %r: %s", self.command, e)

    async def _kill(self) -> None:
        # abort() may land while the shell is still being spawned
        await self._spawn_settled.wait()
        if self.handle is None:
            return
        await self.handle.kill()
        reader = self._reader
        if reader is not None and not reader.done():
            # A descendant that left the process group can hold the pipe open
            asyncio.get_running_loop().call_later(self._config.abort_grace, reader.cancel)
