"""Command start/end markers in shell output.

Two kinds of markers are recognised:

- Shell-integration escape sequences (OSC 633 as emitted by VS Code's
  shell integration scripts, and the older OSC 133): ``ESC ] 633 ; C BEL``
  marks the start of command output and ``ESC ] 633 ; D ; <code> BEL`` its
  end. ``ST`` (``ESC \\``) is accepted as terminator in place of ``BEL``.
- Explicit text markers printed by a wrapper around the command
  (``CompletionMarkers``), for shells without escape-sequence integration.

A marker may arrive split across chunks; ``MarkerScanner`` holds back an
unfinished marker until the rest of it arrives.
"""

from __future__ import annotations

import re
import secrets
from dataclasses import dataclass
from enum import Enum

DEFAULT_START_MARKER = "▶▶▶ AGENTTERM_CMD_START"
DEFAULT_END_MARKER = "◀◀◀ AGENTTERM_CMD_END"

# Longest tail held back while waiting for the rest of a marker
_MAX_PENDING = 4096

_OSC_PATTERN = r"\x1b\](?:633|133);(?P<osc>[A-Za-z])(?:;(?P<arg>[^\x07\x1b]*))?(?:\x07|\x1b\\)"


@dataclass(frozen=True)
class MarkedContent:
    """Output found between a start and an end marker."""

    content: str
    exit_code: int | None


class CompletionMarkers:
    """Nonce-tagged text markers wrapped around a command.

    The nonce changes with every ``begin()`` so a marker left over from an
    earlier command, or echoed back as part of the command line itself,
    never matches the current run.

    Example:
        markers = CompletionMarkers()
        wrapped = markers.wrap_for_bash("make test")
        # ...send ``wrapped`` to the shell, collect output...
        found = markers.extract_content_between_markers(output)
    """

    def __init__(
        self,
        start_marker: str = DEFAULT_START_MARKER,
        end_marker: str = DEFAULT_END_MARKER,
        use_nonce: bool = True,
    ) -> None:
        self._start = start_marker
        self._end = end_marker
        self._use_nonce = use_nonce
        self.nonce: str | None = None

    def begin(self) -> str:
        """Start a new command: pick a fresh nonce and return the start marker."""
        self.nonce = secrets.token_hex(8) if self._use_nonce else None
        return self.start_marker

    def reset(self) -> None:
        self.nonce = None

    @property
    def start_marker(self) -> str:
        return f"{self._start}:{self.nonce}" if self.nonce else self._start

    @property
    def end_prefix(self) -> str:
        return f"{self._end}:{self.nonce}" if self.nonce else self._end

    def end_marker(self, exit_code: int | None = None) -> str:
        if exit_code is None:
            return self.end_prefix
        return f"{self.end_prefix}:EXIT_CODE={exit_code}"

    def wrap_for_bash(self, command: str) -> str:
        """Wrap a command for bash/zsh/sh, preserving its exit status in ``$?``."""
        start = self.begin()
        return "\n".join(
            [
                f'echo "{start}"',
                command,
                "__agentterm_ec=$?",
                f'echo "{self.end_prefix}:EXIT_CODE=$__agentterm_ec"',
                "(exit $__agentterm_ec)",
            ]
        )

    def wrap_for_powershell(self, command: str) -> str:
        """Wrap a command for PowerShell, mapping exceptions to exit code 1."""
        start = self.begin()
        return "\n".join(
            [
                f'Write-Host "{start}"',
                "try {",
                f"    {command}",
                "    $__agenttermExitCode = $LASTEXITCODE",
                "    if ($null -eq $__agenttermExitCode) { $__agenttermExitCode = 0 }",
                "} catch {",
                "    Write-Error $_",
                "    $__agenttermExitCode = 1",
                "}",
                f'Write-Host "{self.end_prefix}:EXIT_CODE=$__agenttermExitCode"',
            ]
        )

    def wrap(self, command: str, shell: str | None = None) -> str:
        """Wrap for the given shell executable name (PowerShell or POSIX-like)."""
        name = (shell or "").lower()
        if "pwsh" in name or "powershell" in name:
            return self.wrap_for_powershell(command)
        return self.wrap_for_bash(command)

    def start_line_pattern(self) -> str:
        """Regex (MULTILINE) matching a whole printed start-marker line."""
        return rf"^[ \t]*{re.escape(self.start_marker)}[ \t]*\r?(?:\n|$)"

    def end_line_pattern(self) -> str:
        """Regex (MULTILINE) matching a whole printed end-marker line; group ``code``."""
        return rf"^[ \t]*{re.escape(self.end_prefix)}:EXIT_CODE=(?P<code>-?\d+)[ \t]*\r?(?:\n|$)"

    def has_start_marker(self, output: str) -> bool:
        return re.search(self.start_line_pattern(), output, re.MULTILINE) is not None

    def has_end_marker(self, output: str) -> bool:
        return re.search(self.end_line_pattern(), output, re.MULTILINE) is not None

    def extract_content_between_markers(self, output: str) -> MarkedContent | None:
        """Return the output between the start and end markers, or None if either is missing."""
        start = re.search(self.start_line_pattern(), output, re.MULTILINE)
        if start is None:
            return None
        end = re.compile(self.end_line_pattern(), re.MULTILINE).search(output, start.end())
        if end is None:
            return None
        return MarkedContent(
            content=output[start.end() : end.start()].strip(),
            exit_code=int(end.group("code")),
        )

    def remove_markers(self, output: str) -> str:
        """Strip marker lines from output."""
        cleaned = re.sub(self.start_line_pattern(), "", output, flags=re.MULTILINE)
        cleaned = re.sub(self.end_line_pattern(), "", cleaned, flags=re.MULTILINE)
        return cleaned


class MarkerKind(str, Enum):
    OUTPUT = "output"
    START = "start"
    END = "end"


@dataclass(frozen=True)
class MarkerEvent:
    kind: MarkerKind
    text: str = ""
    exit_code: int | None = None


class MarkerScanner:
    """Splits a chunk stream into output and start/end marker events.

    Shell-integration sequences other than start and end (prompt, command
    line, properties) are stripped from the output.
    """

    def __init__(self, markers: CompletionMarkers | None = None) -> None:
        self._markers = markers
        pattern = _OSC_PATTERN
        if markers is not None:
            pattern = (
                f"(?P<tstart>{markers.start_line_pattern()})"
                f"|(?P<tend>{markers.end_line_pattern()})"
                f"|{_OSC_PATTERN}"
            )
        self._regex = re.compile(pattern, re.MULTILINE)
        self._pending = ""

    def feed(self, chunk: str) -> list[MarkerEvent]:
        data = self._pending + chunk
        cut = self._pending_cut(data)
        self._pending = data[cut:]
        return self._scan(data[:cut])

    def finish(self) -> list[MarkerEvent]:
        """Flush anything held back at end of stream."""
        data, self._pending = self._pending, ""
        return self._scan(data)

    def _pending_cut(self, data: str) -> int:
        cut = len(data)

        osc = data.rfind("\x1b]")
        if osc != -1:
            tail = data[osc:]
            if "\x07" not in tail and "\x1b\\" not in tail and len(tail) < _MAX_PENDING:
                cut = osc
        if data.endswith("\x1b"):
            cut = min(cut, len(data) - 1)

        if self._markers is not None:
            line_start = data.rfind("\n") + 1
            line = data[line_start:]
            if ("▶" in line or "◀" in line) and len(line) < _MAX_PENDING:
                cut = min(cut, line_start)

        return cut

    def _scan(self, data: str) -> list[MarkerEvent]:
        events: list[MarkerEvent] = []
        pos = 0
        for match in self._regex.finditer(data):
            if match.start() > pos:
                events.append(MarkerEvent(MarkerKind.OUTPUT, data[pos : match.start()]))
            pos = match.end()

            groups = match.groupdict()
            if groups.get("tstart") is not None:
                events.append(MarkerEvent(MarkerKind.START))
            elif groups.get("tend") is not None:
                events.append(MarkerEvent(MarkerKind.END, exit_code=int(groups["code"])))
            elif groups.get("osc") == "C":
                events.append(MarkerEvent(MarkerKind.START))
            elif groups.get("osc") == "D":
                events.append(MarkerEvent(MarkerKind.END, exit_code=_parse_exit_code(groups.get("arg"))))

        if pos < len(data):
            events.append(MarkerEvent(MarkerKind.OUTPUT, data[pos:]))
        return events


def _parse_exit_code(arg: str | None) -> int | None:
    if not arg:
        return None
    try:
        return int(arg.split(";", 1)[0])
    except ValueError:
        return None
