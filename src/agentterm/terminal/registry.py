"""Pool of terminals keyed by working directory and owner."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable

from agentterm.config import get_config, on_config_reload
from agentterm.config.schema import Config, TerminalConfig
from agentterm.logging import get_logger
from agentterm.terminal.errors import UnknownProviderError
from agentterm.terminal.events import TerminalCallbacks
from agentterm.terminal.integration_process import ShellIntegration
from agentterm.terminal.terminal import PROVIDER_INTEGRATION, PROVIDERS, Terminal
from agentterm.terminal.termination import TerminationStrategy

log = get_logger("terminal.registry")

# Creates an editor terminal for a working directory
IntegrationFactory = Callable[[str], ShellIntegration]

NO_SHELL_INTEGRATION_MESSAGE = (
    "Shell integration is not available; running commands in a direct subprocess instead."
)


def paths_equal(a: str, b: str) -> bool:
    """Compare paths the way the OS does (case-insensitive on Windows)."""
    return os.path.normcase(os.path.normpath(os.path.abspath(a))) == os.path.normcase(
        os.path.normpath(os.path.abspath(b))
    )


class TerminalRegistry:
    """Hands out idle terminals and tracks them for the life of the process.

    A terminal belongs to at most one owner (e.g. an agent task) at a time.
    ``acquire`` never returns a busy terminal and never awaits, so two
    concurrent acquisitions cannot receive the same terminal.

    Args:
        config: Terminal configuration. If omitted the global config is
            used and followed across reloads.
        integration_factory: Creates editor terminals for the integration
            provider. Without it integration requests fall back to
            direct spawning.
        strategy: Termination strategy override (tests).
    """

    def __init__(
        self,
        config: TerminalConfig | None = None,
        *,
        integration_factory: IntegrationFactory | None = None,
        strategy: TerminationStrategy | None = None,
    ) -> None:
        self._terminals: list[Terminal] = []
        self._next_id = 1
        self._integration_factory = integration_factory
        self._strategy = strategy
        self._unsubscribe: Callable[[], None] | None = None

        if config is None:
            self._config = get_config().terminal
            self._unsubscribe = on_config_reload(self._on_config_reload)
        else:
            self._config = config

    @property
    def config(self) -> TerminalConfig:
        return self._config

    def _on_config_reload(self, config: Config) -> None:
        log.info("Terminal config reloaded")
        self._config = config.terminal
        for terminal in self._terminals:
            # Applies from each terminal's next run
            terminal.config = config.terminal

    # -- Lookup -----------------------------------------------------------------------

    def _all_terminals(self) -> list[Terminal]:
        self._terminals = [t for t in self._terminals if not t.closed]
        return self._terminals

    def get_terminal(self, terminal_id: int) -> Terminal | None:
        for terminal in self._all_terminals():
            if terminal.id == terminal_id:
                return terminal
        return None

    def get_terminals(self, busy: bool, owner_key: str | None = None) -> list[Terminal]:
        """Terminals with the given busy state, optionally limited to one owner."""
        return [
            t
            for t in self._all_terminals()
            if t.busy == busy and (owner_key is None or t.task_id == owner_key)
        ]

    def get_background_terminals(self, busy: bool | None = None) -> list[Terminal]:
        """Unowned terminals.

        With ``busy`` None, only those that still have output to collect.
        """
        result: list[Terminal] = []
        for terminal in self._all_terminals():
            if terminal.task_id is not None:
                continue
            if busy is None:
                active = terminal.process
                if terminal.get_processes_with_output() or (active and active.has_unretrieved_output()):
                    result.append(terminal)
            elif terminal.busy == busy:
                result.append(terminal)
        return result

    def get_unretrieved_output(self, terminal_id: int) -> str:
        terminal = self.get_terminal(terminal_id)
        return terminal.get_unretrieved_output() if terminal else ""

    def is_process_hot(self, terminal_id: int) -> bool:
        terminal = self.get_terminal(terminal_id)
        if terminal is None or terminal.process is None:
            return False
        return terminal.process.is_hot

    # -- Acquire / release --------------------------------------------------------

    def create_terminal(
        self,
        cwd: str,
        provider: str | None = None,
        callbacks: TerminalCallbacks | None = None,
    ) -> Terminal:
        """Create and register a new terminal."""
        provider = provider or self._config.provider
        if provider not in PROVIDERS:
            raise UnknownProviderError(provider)

        integration = None
        if provider == PROVIDER_INTEGRATION:
            if self._integration_factory is None:
                log.warning("No shell integration available, falling back to subprocess")
                if callbacks is not None:
                    callbacks.emit("no_shell_integration", NO_SHELL_INTEGRATION_MESSAGE)
                provider = "subprocess"
            else:
                integration = self._integration_factory(cwd)

        terminal = Terminal(
            self._next_id,
            cwd,
            provider=provider,
            config=self._config,
            integration=integration,
            strategy=self._strategy,
        )
        self._next_id += 1
        self._terminals.append(terminal)
        log.debug("Created %r", terminal)
        return terminal

    def acquire(
        self,
        cwd: str,
        owner_key: str | None = None,
        provider: str | None = None,
        callbacks: TerminalCallbacks | None = None,
    ) -> Terminal:
        """Return an idle terminal for ``cwd``, creating one if needed.

        Preference order:
        1. an idle terminal already owned by ``owner_key``
        2. an idle unowned terminal (when an owner is given)
        3. any idle terminal (when no owner is given)
        4. a new terminal

        Args:
            cwd: Working directory.
            owner_key: Owner to assign the terminal to.
            provider: "subprocess" or "integration"; defaults to config.
            callbacks: Receives ``no_shell_integration`` if the integration
                provider is unavailable.

        Returns:
            A terminal that is not busy, now assigned to ``owner_key``.
        """
        provider = provider or self._config.provider
        if provider not in PROVIDERS:
            raise UnknownProviderError(provider)
        if provider == PROVIDER_INTEGRATION and self._integration_factory is None:
            effective = "subprocess"
        else:
            effective = provider

        def candidate(t: Terminal) -> bool:
            return not t.busy and t.provider == effective and paths_equal(t.initial_cwd, cwd)

        terminals = self._all_terminals()
        terminal: Terminal | None = None
        if owner_key is not None:
            terminal = next((t for t in terminals if candidate(t) and t.task_id == owner_key), None)
            if terminal is None:
                terminal = next((t for t in terminals if candidate(t) and t.task_id is None), None)
        else:
            terminal = next((t for t in terminals if candidate(t)), None)

        if terminal is None:
            terminal = self.create_terminal(cwd, provider, callbacks)
        elif effective != provider and callbacks is not None:
            callbacks.emit("no_shell_integration", NO_SHELL_INTEGRATION_MESSAGE)

        terminal.task_id = owner_key
        return terminal

    async def release(self, owner_key: str) -> None:
        """Release every terminal owned by ``owner_key``, killing its running commands."""
        processes = []
        for terminal in self._all_terminals():
            if terminal.task_id == owner_key:
                process = terminal.release()
                if process is not None:
                    processes.append(process)
        if processes:
            log.info("Releasing owner %s: aborting %d command(s)", owner_key, len(processes))
            await asyncio.gather(*(p.abort() for p in processes))

    # -- Shell integration notifications ------------------------------------------

    def shell_execution_started(self, terminal_id: int, pid: int | None = None) -> None:
        terminal = self.get_terminal(terminal_id)
        if terminal is None:
            log.debug("Execution start for unknown terminal %d", terminal_id)
            return
        if terminal.process is None:
            log.debug("Execution start on terminal %d with no command of ours", terminal_id)
            return
        terminal.process_started(terminal.process, pid)

    def shell_execution_ended(
        self, terminal_id: int, exit_code: int | None, command: str | None = None
    ) -> None:
        terminal = self.get_terminal(terminal_id)
        if terminal is None:
            log.debug("Execution end for unknown terminal %d", terminal_id)
            return
        terminal.shell_execution_ended(exit_code, command)

    # -- Teardown ------------------------------------------------------------------

    async def dispose(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        terminals, self._terminals = self._terminals, []
        await asyncio.gather(*(t.dispose() for t in terminals))
