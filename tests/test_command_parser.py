"""Tests for compound command splitting."""

from __future__ import annotations

import pytest

from agentterm.terminal.command_parser import (
    count_compound_segments,
    is_compound_command,
    split_compound_command,
)


class TestSplitCompoundCommand:
    """Test top-level && and ; splitting."""

    def test_single_command(self) -> None:
        assert split_compound_command("npm test") == ["npm test"]

    def test_and_and(self) -> None:
        assert split_compound_command("cd app && npm install && npm test") == [
            "cd app",
            "npm install",
            "npm test",
        ]

    def test_semicolon(self) -> None:
        assert split_compound_command("echo a; echo b") == ["echo a", "echo b"]

    def test_mixed(self) -> None:
        assert split_compound_command("make && ./run; echo done") == ["make", "./run", "echo done"]

    def test_empty(self) -> None:
        assert split_compound_command("") == []
        assert split_compound_command("   ") == []

    def test_trailing_separator_ignored(self) -> None:
        assert split_compound_command("echo a;") == ["echo a"]

    @pytest.mark.parametrize(
        "command",
        [
            "echo 'a && b'",
            'echo "a; b"',
            "echo `date; whoami`",
            "echo $(cd /tmp && pwd)",
            "(cd sub; make)",
            r"echo a \; echo b",
        ],
    )
    def test_nested_separators_do_not_split(self, command: str) -> None:
        assert split_compound_command(command) == [command]

    @pytest.mark.parametrize("command", ["a || b", "a | b", "server &", "a |& tee log"])
    def test_other_operators_do_not_split(self, command: str) -> None:
        assert split_compound_command(command) == [command]

    def test_pipe_ampersand_then_and_and(self) -> None:
        assert split_compound_command("make |& tee log && echo ok") == ["make |& tee log", "echo ok"]

    def test_escaped_quote_inside_double_quotes(self) -> None:
        command = 'echo "say \\"hi\\"; now" && ls'
        assert split_compound_command(command) == ['echo "say \\"hi\\"; now"', "ls"]


class TestCompoundCounting:
    """Test segment counting helpers."""

    def test_count_at_least_one(self) -> None:
        assert count_compound_segments("") == 1
        assert count_compound_segments("ls") == 1

    def test_count_compound(self) -> None:
        assert count_compound_segments("a && b && c") == 3

    def test_is_compound(self) -> None:
        assert is_compound_command("a; b")
        assert not is_compound_command("a | b")
