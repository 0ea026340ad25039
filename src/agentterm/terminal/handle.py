"""Wrapper around one spawned OS process."""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

import psutil

from agentterm.config.schema import KillConfig
from agentterm.logging import get_logger
from agentterm.terminal.result import ExitDetails, interpret_exit_code
from agentterm.terminal.termination import (
    TerminationStrategy,
    get_termination_strategy,
    is_pid_alive,
    verify_terminated,
)

if TYPE_CHECKING:
    from asyncio.subprocess import Process

log = get_logger("terminal.handle")


def _first_child_pid(pid: int) -> int | None:
    try:
        children = psutil.Process(pid).children(recursive=False)
    except psutil.Error:
        return None
    return children[0].pid if children else None


class ProcessHandle:
    """A spawned process plus the PID to target when killing it.

    When a command runs through a shell, the PID asyncio reports is the
    shell's. Shortly after spawn the handle looks for a child of that shell
    and, if it finds one, kills that PID (and its group or tree) instead.

    Args:
        pid: PID reported by the spawn.
        process: The asyncio process object, if this handle spawned it.
        strategy: Termination strategy; defaults to the platform's.
        kill_config: Verification delay and retry tuning.
    """

    def __init__(
        self,
        pid: int,
        process: Process | None = None,
        strategy: TerminationStrategy | None = None,
        kill_config: KillConfig | None = None,
    ) -> None:
        self.pid = pid
        self.resolved_pid: int | None = None
        self._process = process
        self._kill_config = kill_config or KillConfig()
        self._strategy = strategy or get_termination_strategy(self._kill_config)
        self._resolve_task: asyncio.Task[int | None] | None = None
        self._verify_task: asyncio.Task[bool] | None = None
        self._kill_attempted = False

    @property
    def target_pid(self) -> int:
        return self.resolved_pid or self.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process is not None else None

    @property
    def exited(self) -> bool:
        return self.returncode is not None

    @property
    def exit_details(self) -> ExitDetails | None:
        """Exit details once the process has exited, else None (pending)."""
        if not self.exited:
            return None
        return interpret_exit_code(self.returncode)

    def schedule_pid_resolution(self, delay: float = 0.1) -> asyncio.Task[int | None]:
        """Look up the shell's first child after ``delay`` seconds.

        Failure leaves ``resolved_pid`` unset; termination then targets the
        shell itself.
        """
        if self._resolve_task is None:
            self._resolve_task = asyncio.create_task(self._resolve_pid(delay))
        return self._resolve_task

    async def _resolve_pid(self, delay: float) -> int | None:
        await asyncio.sleep(delay)
        if self.exited:
            return None
        try:
            child = await asyncio.to_thread(_first_child_pid, self.pid)
        except Exception as e:
            log.debug("PID resolution failed for %d: %s", self.pid, e)
            return None
        if child is not None:
            self.resolved_pid = child
            log.debug("Resolved shell %d to child %d", self.pid, child)
        return child

    async def kill(self, is_main_process: bool = True) -> bool:
        """Terminate the process tree. A no-op once exited or already killed."""
        if self._kill_attempted:
            return True
        if self.exited:
            return True
        self._kill_attempted = True

        if self._resolve_task is not None and not self._resolve_task.done():
            with contextlib.suppress(asyncio.CancelledError):
                await self._resolve_task

        target = self.target_pid
        log.info("Killing process %d (shell pid %d)", target, self.pid)
        delivered = await self._strategy.kill(target, is_main_process=is_main_process)

        if self._process is not None and target != self.pid and not self.exited:
            # Our own shell may outlive its killed child; a borrowed one is left alone
            await self._strategy.kill(self.pid, is_main_process=is_main_process)

        self._verify_task = asyncio.create_task(
            verify_terminated(target, self._kill_config.verify_delay)
        )
        return delivered

    def is_alive(self) -> bool:
        if self.exited:
            return False
        return is_pid_alive(self.target_pid)

    def cancel_resolution(self) -> None:
        if self._resolve_task is not None and not self._resolve_task.done():
            self._resolve_task.cancel()
