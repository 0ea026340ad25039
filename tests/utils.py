"""Shared test utilities and fakes for agentterm tests."""

from __future__ import annotations

import asyncio
import sys
from collections.abc import AsyncIterator, Callable

import pytest

from agentterm.config.schema import KillConfig, TerminalConfig

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell semantics")


def fast_terminal_config(**overrides: object) -> TerminalConfig:
    """Create a TerminalConfig with short timers so tests finish quickly.

    Args:
        **overrides: Field values to replace on top of the fast defaults.

    Returns:
        TerminalConfig instance
    """
    values: dict[str, object] = {
        "emit_interval": 0.0,
        "hot_timeout_normal": 0.2,
        "hot_timeout_compiling": 0.5,
        "compound_finalize_timeout": 0.3,
        "shell_integration_timeout": 0.3,
        "abort_grace": 1.0,
        "pid_resolve_delay": 0.05,
        "kill": KillConfig(verify_delay=0.05, retries=3, retry_backoff=0.0, command_timeout=1.0),
    }
    values.update(overrides)
    return TerminalConfig(**values)  # type: ignore[arg-type]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the event loop until it holds.

    Raises:
        AssertionError: If it does not hold within ``timeout`` seconds.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class FakeIntegration:
    """In-memory stand-in for an editor terminal with shell integration.

    Chunks passed to ``feed`` are streamed to whoever is consuming the
    current ``execute`` call; ``close`` ends that stream.
    """

    def __init__(
        self,
        pid: int | None = None,
        shell: str | None = "bash",
        close_on_interrupt: bool = True,
    ) -> None:
        self.pid = pid
        self.shell = shell
        self.close_on_interrupt = close_on_interrupt
        self.commands: list[str] = []
        self.interrupts = 0
        self.disposed = False
        self._queue: asyncio.Queue[str | bytes | None] = asyncio.Queue()

    def execute(self, command: str) -> AsyncIterator[str | bytes]:
        self.commands.append(command)
        return self._stream()

    async def _stream(self) -> AsyncIterator[str | bytes]:
        while True:
            chunk = await self._queue.get()
            if chunk is None:
                return
            yield chunk

    def feed(self, *chunks: str | bytes) -> None:
        for chunk in chunks:
            self._queue.put_nowait(chunk)

    def close(self) -> None:
        self._queue.put_nowait(None)

    async def send_interrupt(self) -> None:
        self.interrupts += 1
        if self.close_on_interrupt:
            self.close()

    async def dispose(self) -> None:
        if not self.disposed:
            self.disposed = True
            self.close()


class RecordingStrategy:
    """Termination strategy that records kills instead of sending signals."""

    def __init__(self, result: bool = True) -> None:
        self.result = result
        self.kills: list[tuple[int, bool]] = []

    async def kill(self, pid: int, *, is_main_process: bool = True) -> bool:
        self.kills.append((pid, is_main_process))
        return self.result


def osc_start() -> str:
    """Shell-integration escape sequence for "command output starts"."""
    return "\x1b]633;C\x07"


def osc_end(exit_code: int | None = 0) -> str:
    """Shell-integration escape sequence for "command finished"."""
    if exit_code is None:
        return "\x1b]633;D\x07"
    return f"\x1b]633;D;{exit_code}\x07"
