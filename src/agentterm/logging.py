"""Logging for the terminal engine and the agentterm command line.

Everything logs under the ``agentterm`` logger: spawns, kill tiers,
compound finalization, config reloads. Embedders usually route that to a
file (``logging.file`` or ``AGENTTERM_LOG``) because stdout and stderr belong
to the commands being run; a console handler is only added when stderr is a
terminal or the CLI asks for it.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from agentterm.config.schema import LoggingConfig

# Below DEBUG: per-chunk output handling
TRACE = 5
# Between DEBUG and INFO: timer and PID-resolution chatter
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

logger = logging.getLogger("agentterm")

LOG_ENV_VAR = "AGENTTERM_LOG"

# Index is the -v count / logging.verbose value
_VERBOSITY_LEVELS = (logging.ERROR, logging.WARNING, logging.INFO, VERBOSE, TRACE)

_NAMED_LEVELS = {
    "TRACE": TRACE,
    "DEBUG": logging.DEBUG,
    "VERBOSE": VERBOSE,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

_initialized = False


class _LowercaseLevelFormatter(logging.Formatter):
    """``12:03:44 warning: pid 4312 survived tree kill``"""

    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        return super().format(record)


def resolve_level(config: LoggingConfig | None) -> int:
    """Effective level for ``config``; ``verbose`` wins over ``level``.

    Verbosity beyond the last step means TRACE; an unknown level name
    means INFO.
    """
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        step = max(0, config.verbose)
        return _VERBOSITY_LEVELS[min(step, len(_VERBOSITY_LEVELS) - 1)]
    if config.level:
        return _NAMED_LEVELS.get(config.level.upper(), logging.INFO)
    return logging.INFO


def _attach(handler: logging.Handler, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(_LowercaseLevelFormatter("%(asctime)s %(levelname)s: %(message)s", datefmt="%H:%M:%S"))
    logger.addHandler(handler)


def setup_logging(config: LoggingConfig | None = None, *, force_stderr: bool = False) -> None:
    """Install the agentterm handlers once per process.

    Later calls are ignored until ``reset_logging()``.

    Args:
        config: Level, verbosity (0 errors .. 4 trace) and log file.
        force_stderr: Log to stderr even when it is not a terminal.
    """
    global _initialized
    if _initialized:
        return
    _initialized = True

    level = resolve_level(config)
    logger.setLevel(level)
    console = force_stderr or sys.stderr.isatty()

    path = (config.file if config else None) or os.environ.get(LOG_ENV_VAR)
    if not path:
        if console:
            _attach(logging.StreamHandler(sys.stderr), level)
        return

    try:
        handler = logging.FileHandler(os.path.expanduser(path), mode="a", encoding="utf-8")
    except OSError as e:
        if console:
            print(f"[agentterm] Cannot open log file {path}: {e}", file=sys.stderr)
            _attach(logging.StreamHandler(sys.stderr), level)
        return
    _attach(handler, level)


def reset_logging() -> None:
    """Close and remove the installed handlers."""
    global _initialized
    _initialized = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def get_logger(name: str | None = None) -> logging.Logger:
    """Child of the ``agentterm`` logger, e.g. ``get_logger("terminal.kill")``."""
    return logger.getChild(name) if name else logger
