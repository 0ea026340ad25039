"""Tests for process tree termination."""

from __future__ import annotations

import asyncio
import subprocess
import sys

import psutil
import pytest

from agentterm.config.schema import KillConfig
from agentterm.terminal.termination import (
    PosixTermination,
    WindowsTermination,
    get_termination_strategy,
    is_pid_alive,
    verify_terminated,
)
from tests.utils import posix_only, wait_until


class FakeRunner:
    """Records taskkill invocations and replays scripted exit codes."""

    def __init__(self, *codes: int | BaseException) -> None:
        self.codes = list(codes)
        self.calls: list[list[str]] = []

    async def __call__(self, args: list[str], timeout: float) -> int:
        self.calls.append(args)
        code = self.codes.pop(0) if self.codes else 1
        if isinstance(code, BaseException):
            raise code
        return code


class TestWindowsTermination:
    """Test taskkill invocation and retries (runs on any platform)."""

    @pytest.fixture
    def config(self) -> KillConfig:
        return KillConfig(retries=3, retry_backoff=0.0, command_timeout=1.0)

    @pytest.mark.asyncio
    async def test_tree_kill_for_main_process(self, config: KillConfig) -> None:
        runner = FakeRunner(0)
        assert await WindowsTermination(config, runner).kill(1234)
        assert runner.calls == [["taskkill", "/PID", "1234", "/F", "/T"]]

    @pytest.mark.asyncio
    async def test_single_process_kill(self, config: KillConfig) -> None:
        runner = FakeRunner(0)
        await WindowsTermination(config, runner).kill(1234, is_main_process=False)
        assert runner.calls == [["taskkill", "/PID", "1234", "/F"]]

    @pytest.mark.asyncio
    async def test_not_found_counts_as_success(self, config: KillConfig) -> None:
        runner = FakeRunner(128)
        assert await WindowsTermination(config, runner).kill(1234)
        assert len(runner.calls) == 1

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, config: KillConfig) -> None:
        runner = FakeRunner(1, asyncio.TimeoutError(), 0)
        assert await WindowsTermination(config, runner).kill(1234)
        assert len(runner.calls) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self, config: KillConfig) -> None:
        runner = FakeRunner(1, 1, 1, 1)
        assert not await WindowsTermination(config, runner).kill(1234)
        assert len(runner.calls) == 3

    @pytest.mark.asyncio
    async def test_spawn_failure_returns_false(self, config: KillConfig) -> None:
        runner = FakeRunner(FileNotFoundError("taskkill"))
        assert not await WindowsTermination(config, runner).kill(1234)
        assert len(runner.calls) == 1


@posix_only
class TestPosixTermination:
    """Test group kills against real processes."""

    @pytest.mark.asyncio
    async def test_kills_process_group(self) -> None:
        proc = await asyncio.create_subprocess_shell(
            "sleep 30 & sleep 30; wait",
            stdout=subprocess.DEVNULL,
            start_new_session=True,
        )
        await wait_until(lambda: len(psutil.Process(proc.pid).children()) == 2)
        children = [c.pid for c in psutil.Process(proc.pid).children()]

        assert await PosixTermination().kill(proc.pid)
        await asyncio.wait_for(proc.wait(), timeout=5)
        assert proc.returncode == -9

        # The whole group is gone, not just the shell
        await wait_until(lambda: not any(is_pid_alive(pid) for pid in children))

    @pytest.mark.asyncio
    async def test_same_group_falls_back_to_pid(self) -> None:
        """A child in our own process group is killed without signalling the group."""
        proc = await asyncio.create_subprocess_exec("sleep", "30")
        assert await PosixTermination().kill(proc.pid)
        await asyncio.wait_for(proc.wait(), timeout=5)
        assert proc.returncode == -9

    @pytest.mark.asyncio
    async def test_already_exited(self) -> None:
        proc = await asyncio.create_subprocess_exec("true")
        await proc.wait()
        assert await PosixTermination().kill(proc.pid)

    @pytest.mark.asyncio
    async def test_verify_terminated(self) -> None:
        proc = await asyncio.create_subprocess_exec("sleep", "30")
        assert is_pid_alive(proc.pid)
        await PosixTermination().kill(proc.pid)
        await proc.wait()
        assert await verify_terminated(proc.pid, 0.01)


class TestStrategySelection:
    def test_platform_strategy(self) -> None:
        strategy = get_termination_strategy()
        if sys.platform == "win32":
            assert isinstance(strategy, WindowsTermination)
        else:
            assert isinstance(strategy, PosixTermination)
