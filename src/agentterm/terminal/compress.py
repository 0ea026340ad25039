"""Shrinking command output before handing it to a model.

Progress bars redraw a line many times with ``\\r`` or backspaces; only the
final state of each line is kept. Repeated lines collapse into one line
plus a count. What remains is truncated to a line and a character budget,
keeping the head (20%) and the tail (80%) since errors usually sit at the end.
"""

from __future__ import annotations

_HEAD_RATIO = 0.2


def process_carriage_returns(text: str) -> str:
    """Apply ``\\r`` overwrites within each line, as a terminal would display them."""
    if "\r" not in text:
        return text

    lines = text.replace("\r\n", "\n").split("\n")
    result: list[str] = []
    for line in lines:
        if "\r" not in line:
            result.append(line)
            continue
        screen = ""
        for segment in line.split("\r"):
            # Each segment overwrites from column 0, leaving any longer tail visible
            screen = segment + screen[len(segment) :]
        result.append(screen)
    return "\n".join(result)


def process_backspaces(text: str) -> str:
    """Apply ``\\b`` by deleting the preceding character (never past a line start)."""
    if "\b" not in text:
        return text

    out: list[str] = []
    for ch in text:
        if ch == "\b":
            if out and out[-1] != "\n":
                out.pop()
        else:
            out.append(ch)
    return "".join(out)


def apply_run_length_encoding(text: str) -> str:
    """Collapse runs of identical consecutive lines."""
    if not text:
        return text

    lines = text.split("\n")
    result: list[str] = []
    i = 0
    while i < len(lines):
        line = lines[i]
        run_end = i + 1
        while run_end < len(lines) and lines[run_end] == line:
            run_end += 1
        repeats = run_end - i - 1
        result.append(line)
        if repeats > 0 and line.strip():
            result.append(f"<previous line repeated {repeats} additional times>")
        elif repeats > 0:
            result.extend([line] * repeats)
        i = run_end
    return "\n".join(result)


def truncate_output(text: str, line_limit: int | None = None, character_limit: int | None = None) -> str:
    """Cut ``text`` down to the limits, keeping the beginning and the end.

    Args:
        text: Output to truncate.
        line_limit: Maximum number of lines; None or <= 0 means unlimited.
        character_limit: Maximum number of characters; takes precedence
            over the line limit. None or <= 0 means unlimited.

    Returns:
        The possibly truncated output with an omission notice in the middle.
    """
    if character_limit and character_limit > 0 and len(text) > character_limit:
        head = int(character_limit * _HEAD_RATIO)
        tail = character_limit - head
        omitted = len(text) - character_limit
        return f"{text[:head]}\n[...{omitted} characters omitted...]\n{text[-tail:] if tail else ''}"

    if not line_limit or line_limit <= 0:
        return text

    lines = text.split("\n")
    if len(lines) <= line_limit:
        return text

    head = int(line_limit * _HEAD_RATIO)
    tail = line_limit - head
    omitted = len(lines) - line_limit
    kept_tail = lines[-tail:] if tail else []
    return "\n".join([*lines[:head], f"[...{omitted} lines omitted...]", *kept_tail])


def compress_terminal_output(
    text: str,
    line_limit: int | None = 500,
    character_limit: int | None = 50000,
    *,
    compress_progress_bar: bool = True,
) -> str:
    """Progress-bar cleanup, run-length collapsing, then truncation.

    Args:
        text: Raw command output.
        line_limit: Maximum lines to keep.
        character_limit: Maximum characters to keep.
        compress_progress_bar: Apply ``\\r`` and backspace processing.

    Returns:
        Compressed output.
    """
    if compress_progress_bar:
        text = process_carriage_returns(text)
        text = process_backspaces(text)
    return truncate_output(apply_run_length_encoding(text), line_limit, character_limit)
