"""Matching commands against "should not wait" background patterns."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass


@dataclass(frozen=True)
class BackgroundPatterns:
    """Compiled set of background command patterns.

    A pattern matches a command case-insensitively, either exactly or, when
    it ends in ``*``, as a prefix (``"npm run dev*"`` matches
    ``"npm run dev -- --port 3000"``). Surrounding whitespace is ignored on
    both sides.
    """

    exact: frozenset[str]
    prefixes: tuple[str, ...]

    @classmethod
    def compile(cls, patterns: Iterable[str] | None) -> BackgroundPatterns:
        exact: set[str] = set()
        prefixes: list[str] = []
        for pattern in patterns or ():
            normalized = pattern.strip().lower()
            if not normalized:
                continue
            if normalized.endswith("*"):
                # The space in "npm run *" is part of the prefix
                prefix = normalized.rstrip("*")
                # "*" alone matches every command
                prefixes.append(prefix)
            else:
                exact.add(normalized)
        return cls(exact=frozenset(exact), prefixes=tuple(prefixes))

    def __bool__(self) -> bool:
        return bool(self.exact or self.prefixes)

    def matches(self, command: str) -> bool:
        normalized = command.strip().lower()
        if normalized in self.exact:
            return True
        return any(normalized.startswith(prefix) for prefix in self.prefixes)


EMPTY_PATTERNS = BackgroundPatterns(exact=frozenset(), prefixes=())
