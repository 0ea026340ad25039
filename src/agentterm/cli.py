"""Command-line interface for agentterm."""

from __future__ import annotations

import argparse
import asyncio
import os
from collections.abc import Sequence
from dataclasses import asdict, replace

from rich.console import Console
from rich.table import Table

from agentterm import __version__
from agentterm.config import Config, load_config
from agentterm.config.schema import LoggingConfig
from agentterm.logging import setup_logging
from agentterm.terminal import CommandStatus, TerminalCallbacks, TerminalRegistry
from agentterm.terminal.compress import compress_terminal_output

console = Console()
err_console = Console(stderr=True)

# Conventional exit status after Ctrl-C
EXIT_INTERRUPTED = 130


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="agentterm",
        description="Run shell commands with streamed output and full process-tree cleanup",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (can be repeated)",
    )

    subparsers = parser.add_subparsers(dest="mode", help="Operating mode")

    run_parser = subparsers.add_parser("run", help="Run a command")
    run_parser.add_argument("command", help="Command line to run (quote it)")
    run_parser.add_argument(
        "--cwd",
        default=os.getcwd(),
        help="Working directory (default: current directory)",
    )
    run_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Advisory timeout in seconds; the command keeps running (0 disables)",
    )
    run_parser.add_argument(
        "--background",
        action="append",
        default=[],
        metavar="PATTERN",
        help="Pattern of commands not to wait for (trailing * for prefix; repeatable)",
    )
    run_parser.add_argument(
        "--provider",
        choices=["subprocess", "integration"],
        default=None,
        help="Terminal provider (default: from config)",
    )
    run_parser.add_argument(
        "--compress",
        action="store_true",
        help="Print compressed output at the end instead of streaming it",
    )

    config_parser = subparsers.add_parser("config", help="Show the effective terminal configuration")
    config_parser.add_argument(
        "--cwd",
        default=os.getcwd(),
        help="Project directory for project-level config",
    )

    return parser


def cli_logging_config(configured: LoggingConfig, verbose_flags: int) -> LoggingConfig:
    """Apply ``-v`` flags on top of the configured logging settings.

    Each ``-v`` raises verbosity one step above warnings. Without flags the
    configured ``verbose`` or ``level`` applies, or warnings when neither is set.
    """
    if verbose_flags:
        verbose: int | None = min(4, 1 + verbose_flags)
    elif configured.verbose is None and not configured.level:
        verbose = 1
    else:
        verbose = configured.verbose
    return replace(configured, verbose=verbose)


def _write(text: str) -> None:
    console.print(text, end="", markup=False, highlight=False, soft_wrap=True)


async def run_command(args: argparse.Namespace, config: Config) -> int:
    """Run one command, streaming its output; Ctrl-C kills the whole tree."""
    registry = TerminalRegistry(config.terminal)

    callbacks = TerminalCallbacks(
        on_line=None if args.compress else _write,
        on_command_timeout=lambda cmd: err_console.print(
            "[yellow]Timeout reached; command still running (Ctrl-C to kill)[/yellow]"
        ),
        on_background_command=lambda cmd: err_console.print(
            "[cyan]Background command; streaming until it exits (Ctrl-C to kill)[/cyan]"
        ),
        on_no_shell_integration=lambda msg: err_console.print(f"[dim]{msg}[/dim]"),
    )

    terminal = registry.acquire(args.cwd, provider=args.provider, callbacks=callbacks)
    handle = terminal.run(
        args.command,
        callbacks,
        timeout=args.timeout,
        background_patterns=args.background,
    )

    try:
        result = await handle.result()
    except asyncio.CancelledError:
        err_console.print("\n[yellow]Interrupted, killing process tree...[/yellow]")
        await handle.abort()
        await registry.dispose()
        raise

    await registry.dispose()

    if args.compress:
        _write(
            compress_terminal_output(
                result.output,
                config.terminal.output_line_limit,
                config.terminal.output_character_limit,
                compress_progress_bar=config.terminal.compress_progress_bar,
            )
        )
    if result.output and not result.output.endswith("\n"):
        _write("\n")

    details = result.exit_details
    if result.status is CommandStatus.COMPLETED:
        err_console.print(f"[green]Exited 0[/green] [dim]({result.duration_ms:.0f}ms)[/dim]")
        return 0
    if details.signal is not None:
        err_console.print(f"[red]Killed by {details.signal_name}[/red]")
        # Shell convention for death by signal
        return 128 + details.signal
    err_console.print(f"[red]Exited {details.exit_code}[/red]")
    if details.exit_code is None:
        return 1
    return details.exit_code if 0 <= details.exit_code < 256 else 1


def show_config(config: Config) -> int:
    """Print the effective terminal configuration."""
    table = Table(title="Terminal Configuration")
    table.add_column("Setting", style="bold")
    table.add_column("Value")

    for key, value in asdict(config.terminal).items():
        if isinstance(value, dict):
            for sub_key, sub_value in value.items():
                table.add_row(f"{key}.{sub_key}", repr(sub_value))
        else:
            table.add_row(key, repr(value))

    console.print(table)
    return 0


def run_cli(args: Sequence[str]) -> int:
    """Run the CLI with the given arguments."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.mode is None:
        parser.print_help()
        return 1

    config = load_config(project_root=parsed.cwd)
    setup_logging(cli_logging_config(config.logging, parsed.verbose), force_stderr=True)

    if parsed.mode == "run":
        try:
            return asyncio.run(run_command(parsed, config))
        except KeyboardInterrupt:
            return EXIT_INTERRUPTED
    elif parsed.mode == "config":
        return show_config(config)
    else:
        parser.print_help()
        return 1
