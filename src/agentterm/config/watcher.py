"""Polling watcher that reloads config when a config file changes.

Compares modification times on a fixed interval, which works the same on
every platform and needs no extra dependency.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path

from agentterm.config.loader import reload_config
from agentterm.config.paths import get_config_paths

_log = logging.getLogger("agentterm.config.watcher")

DEFAULT_POLL_INTERVAL = 2.0


class ConfigWatcher:
    """Reloads configuration when system, user or project files change."""

    def __init__(
        self,
        project_root: str | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self._project_root = project_root
        self._poll_interval = poll_interval
        self._task: asyncio.Task[None] | None = None
        self._mtimes: dict[Path, float] = {}

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _snapshot(self) -> dict[Path, float]:
        mtimes: dict[Path, float] = {}
        for path in get_config_paths(self._project_root):
            with contextlib.suppress(OSError):
                mtimes[path] = path.stat().st_mtime
        return mtimes

    def check(self) -> list[Path]:
        """Compare against the last snapshot and return created, modified or deleted paths."""
        current = self._snapshot()
        changed = [p for p, mtime in self._mtimes.items() if current.get(p) != mtime]
        changed.extend(p for p in current if p not in self._mtimes)
        self._mtimes = current
        return changed

    async def _poll_loop(self) -> None:
        self._mtimes = self._snapshot()
        while True:
            await asyncio.sleep(self._poll_interval)
            changed = self.check()
            if not changed:
                continue
            _log.info("Config changed: %s", [str(p) for p in changed])
            try:
                reload_config(project_root=self._project_root)
            except Exception as e:
                _log.error("Error reloading config: %s", e)

    def start(self) -> None:
        """Start polling. Must be called with a running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._poll_loop())
        _log.debug("Config watcher started (interval=%.1fs)", self._poll_interval)

    def stop(self) -> None:
        if self._task:
            self._task.cancel()
            self._task = None
        _log.debug("Config watcher stopped")

    async def __aenter__(self) -> ConfigWatcher:
        self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        self.stop()
