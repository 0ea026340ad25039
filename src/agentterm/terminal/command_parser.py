"""Top-level splitting of compound command lines.

Only ``&&`` and ``;`` separate sub-commands. Operators inside single or
double quotes, backticks, parentheses (including ``$(...)`` subshells) or
escaped with a backslash are part of the surrounding word. ``||``, ``|``
and ``&`` do not split: a pipeline reports a single exit, and the exit of
an ``||`` branch is not observable separately.
"""

from __future__ import annotations


def split_compound_command(command: str) -> list[str]:
    """Split a command line on top-level ``&&`` and ``;``.

    Args:
        command: The full command line.

    Returns:
        The stripped, non-empty sub-commands in order. A line without
        top-level separators yields a single element; an empty line yields
        an empty list.
    """
    segments: list[str] = []
    current: list[str] = []
    quote: str | None = None
    depth = 0
    i = 0
    n = len(command)

    while i < n:
        ch = command[i]

        if quote is not None:
            current.append(ch)
            if ch == "\\" and quote != "'" and i + 1 < n:
                current.append(command[i + 1])
                i += 2
                continue
            if ch == quote:
                quote = None
            i += 1
            continue

        if ch == "\\" and i + 1 < n:
            current.append(ch)
            current.append(command[i + 1])
            i += 2
            continue

        if ch in ("'", '"', "`"):
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")" and depth > 0:
            depth -= 1
        elif depth == 0:
            if ch == ";":
                segments.append("".join(current))
                current = []
                i += 1
                continue
            if ch == "&" and command.startswith("&&", i):
                segments.append("".join(current))
                current = []
                i += 2
                continue
            if ch == "|" and command.startswith("|&", i):
                # bash's "|&" pipes stderr too; its "&" must not pair with a following "&"
                current.append("|&")
                i += 2
                continue

        current.append(ch)
        i += 1

    segments.append("".join(current))
    return [segment.strip() for segment in segments if segment.strip()]


def count_compound_segments(command: str) -> int:
    """Number of sub-commands, at least 1."""
    return max(1, len(split_compound_command(command)))


def is_compound_command(command: str) -> bool:
    return count_compound_segments(command) > 1
