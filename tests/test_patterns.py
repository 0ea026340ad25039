"""Tests for background command patterns."""

from __future__ import annotations

from agentterm.terminal.patterns import EMPTY_PATTERNS, BackgroundPatterns


class TestBackgroundPatterns:
    def test_exact_match_case_insensitive(self) -> None:
        patterns = BackgroundPatterns.compile(["npm run dev"])
        assert patterns.matches("npm run dev")
        assert patterns.matches("  NPM Run Dev ")
        assert not patterns.matches("npm run dev --port 3000")

    def test_prefix_match(self) -> None:
        patterns = BackgroundPatterns.compile(["npm run dev*"])
        assert patterns.matches("npm run dev -- --port 3000")
        assert patterns.matches("npm run dev")
        assert not patterns.matches("npm test")

    def test_star_matches_everything(self) -> None:
        patterns = BackgroundPatterns.compile(["*"])
        assert patterns.matches("anything at all")

    def test_prefix_keeps_word_boundary(self) -> None:
        patterns = BackgroundPatterns.compile(["npm run *"])
        assert patterns.matches("npm run dev")
        assert patterns.matches("NPM RUN build")
        assert not patterns.matches("npm runner")

    def test_blank_patterns_ignored(self) -> None:
        patterns = BackgroundPatterns.compile(["", "   "])
        assert not patterns
        assert not patterns.matches("")

    def test_empty(self) -> None:
        assert not EMPTY_PATTERNS
        assert not EMPTY_PATTERNS.matches("npm run dev")
        assert not BackgroundPatterns.compile(None)
