"""Tests for the output buffer."""

from __future__ import annotations

from agentterm.terminal.output import OutputBuffer


class TestOutputBuffer:
    """Test appending, decoding and draining output."""

    def test_append_text(self) -> None:
        buf = OutputBuffer()
        assert buf.append("hello\n") == "hello\n"
        assert buf.full_output == "hello\n"
        assert len(buf) == 6

    def test_drain_returns_complete_lines_only(self) -> None:
        buf = OutputBuffer()
        buf.append("line1\nline2\npart")
        assert buf.drain() == "line1\nline2\n"
        assert buf.has_unretrieved()
        assert buf.drain() == ""

        buf.append("ial\n")
        assert buf.drain() == "partial\n"
        assert not buf.has_unretrieved()

    def test_drain_all_includes_partial_line(self) -> None:
        buf = OutputBuffer()
        buf.append("a\nb")
        assert buf.drain() == "a\n"
        assert buf.drain_all() == "b"
        assert buf.retrieved_index == len(buf.full_output)

    def test_retrieved_index_never_exceeds_output(self) -> None:
        buf = OutputBuffer()
        for chunk in ("x", "y\n", "", "z\n\n"):
            buf.append(chunk)
            buf.drain()
            assert buf.retrieved_index <= len(buf.full_output)

    def test_split_utf8_sequence(self) -> None:
        """A multi-byte character split across reads is decoded once complete."""
        encoded = "héllo\n".encode()
        buf = OutputBuffer()
        assert buf.append(encoded[:2]) == "h"
        assert buf.append(encoded[2:]) == "éllo\n"
        assert buf.full_output == "héllo\n"

    def test_invalid_bytes_replaced(self) -> None:
        buf = OutputBuffer()
        buf.append(b"ok\xff\n")
        assert buf.full_output == "ok�\n"

    def test_flush_trailing_partial_sequence(self) -> None:
        buf = OutputBuffer()
        buf.append("€".encode()[:2])
        assert buf.full_output == ""
        assert buf.flush() == "�"

    def test_reset(self) -> None:
        buf = OutputBuffer()
        buf.append("something\n")
        buf.drain()
        buf.reset()
        assert buf.full_output == ""
        assert buf.retrieved_index == 0
        assert not buf.has_unretrieved()
