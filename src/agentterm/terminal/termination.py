"""Killing a process and everything it spawned.

POSIX commands are spawned as session leaders, so the whole tree shares one
process group and a single ``killpg`` reaches it. Windows has no process
groups in that sense; ``taskkill /T`` walks the tree instead.

Every step is best effort: failures are logged and the next tier is tried.
Nothing here raises.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import signal
import subprocess
import sys
from collections.abc import Awaitable, Callable
from typing import Protocol

import psutil

from agentterm.config.schema import KillConfig
from agentterm.logging import get_logger

log = get_logger("terminal.kill")

# Runs an argv with a timeout and returns its exit code
CommandRunner = Callable[[list[str], float], Awaitable[int]]

# taskkill's exit code when the PID no longer exists
_TASKKILL_NOT_FOUND = 128


class TerminationStrategy(Protocol):
    """Kills a process (tree) by PID."""

    async def kill(self, pid: int, *, is_main_process: bool = True) -> bool:
        """Kill ``pid`` and, for a main process, its descendants.

        Returns:
            True if a kill was delivered or the process was already gone.
        """
        ...


def is_pid_alive(pid: int) -> bool:
    """Liveness probe used for diagnostics. Zombies count as dead."""
    if sys.platform == "win32":
        return psutil.pid_exists(pid)
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.Error:
        return False


async def verify_terminated(pid: int, delay: float) -> bool:
    """Wait ``delay`` seconds, then log whether ``pid`` survived the kill."""
    await asyncio.sleep(delay)
    alive = await asyncio.to_thread(is_pid_alive, pid)
    if alive:
        log.warning("Process %d still running %.1fs after kill", pid, delay)
    else:
        log.debug("Process %d confirmed terminated", pid)
    return not alive


def _kill_children(pid: int) -> int:
    """SIGKILL the direct children of ``pid``; returns how many were signalled."""
    try:
        children = psutil.Process(pid).children(recursive=False)
    except psutil.Error as e:
        log.debug("Cannot list children of %d: %s", pid, e)
        return 0
    killed = 0
    for child in children:
        try:
            child.kill()
            killed += 1
        except psutil.Error as e:
            log.debug("Cannot kill child %d of %d: %s", child.pid, pid, e)
    return killed


class PosixTermination:
    """Process-group kill with per-child and single-PID fallbacks."""

    def __init__(self, config: KillConfig | None = None) -> None:
        self._config = config or KillConfig()

    async def kill(self, pid: int, *, is_main_process: bool = True) -> bool:
        if is_main_process and self._kill_group(pid):
            return True

        killed = await asyncio.to_thread(_kill_children, pid)
        if killed:
            log.debug("Killed %d child process(es) of %d", killed, pid)

        try:
            os.kill(pid, signal.SIGKILL)
            log.debug("Sent SIGKILL to %d", pid)
            return True
        except ProcessLookupError:
            log.debug("Process %d already exited", pid)
            return True
        except OSError as e:
            log.warning("Failed to kill process %d: %s", pid, e)
            return False

    def _kill_group(self, pid: int) -> bool:
        try:
            pgid = os.getpgid(pid)
        except ProcessLookupError:
            return False
        except OSError as e:
            log.debug("Cannot get process group of %d: %s", pid, e)
            return False

        if pgid == os.getpgrp():
            # The process never left our group; a group kill would take us down too
            log.debug("Process %d shares our process group, skipping group kill", pid)
            return False

        try:
            os.killpg(pgid, signal.SIGKILL)
        except ProcessLookupError:
            return False
        except OSError as e:
            log.warning("Failed to kill process group %d: %s", pgid, e)
            return False

        log.debug("Sent SIGKILL to process group %d (pid %d)", pgid, pid)
        return True


async def _run_command(args: list[str], timeout: float) -> int:
    proc = await asyncio.create_subprocess_exec(
        *args,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
    )
    try:
        _, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()
        raise
    if proc.returncode and stderr:
        log.debug("%s: %s", args[0], stderr.decode(errors="replace").strip())
    return proc.returncode if proc.returncode is not None else 1


class WindowsTermination:
    """``taskkill`` with retries; ``/T`` takes the whole tree for a main process."""

    def __init__(self, config: KillConfig | None = None, runner: CommandRunner | None = None) -> None:
        self._config = config or KillConfig()
        self._runner = runner or _run_command

    async def kill(self, pid: int, *, is_main_process: bool = True) -> bool:
        args = ["taskkill", "/PID", str(pid), "/F"]
        if is_main_process:
            args.append("/T")

        attempts = max(1, self._config.retries)
        for attempt in range(1, attempts + 1):
            try:
                code = await self._runner(args, self._config.command_timeout)
            except asyncio.TimeoutError:
                log.warning("taskkill timed out for %d (attempt %d/%d)", pid, attempt, attempts)
                code = None
            except OSError as e:
                log.warning("taskkill failed to start for %d: %s", pid, e)
                return False

            if code == 0:
                log.debug("taskkill terminated %d (attempt %d)", pid, attempt)
                return True
            if code == _TASKKILL_NOT_FOUND:
                log.debug("Process %d already exited", pid)
                return True
            if code is not None:
                log.debug("taskkill exited %d for %d (attempt %d/%d)", code, pid, attempt, attempts)
            if attempt < attempts:
                await asyncio.sleep(self._config.retry_backoff)

        log.warning("Failed to terminate process %d after %d attempts", pid, attempts)
        return False


def get_termination_strategy(config: KillConfig | None = None) -> TerminationStrategy:
    """Strategy for the current platform."""
    if sys.platform == "win32":
        return WindowsTermination(config)
    return PosixTermination(config)
