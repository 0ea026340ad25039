"""Accumulated command output with a retrieval checkpoint."""

from __future__ import annotations

import codecs


class OutputBuffer:
    """Append-only output of one command run.

    Byte chunks are decoded as UTF-8 incrementally, so a multi-byte
    character split across two reads is held back until it is complete.
    Invalid bytes become U+FFFD.

    ``drain()`` hands out output in whole lines and advances a checkpoint
    past what it returned; the invariant ``retrieved_index <= len(full_output)``
    always holds.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._parts: list[str] = []
        self._text = ""
        self._retrieved_index = 0

    @property
    def full_output(self) -> str:
        if self._parts:
            self._text += "".join(self._parts)
            self._parts.clear()
        return self._text

    @property
    def retrieved_index(self) -> int:
        return self._retrieved_index

    def append(self, chunk: str | bytes) -> str:
        """Append a chunk and return the text it contributed."""
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        if text:
            self._parts.append(text)
        return text

    def flush(self) -> str:
        """Decode any trailing partial sequence at end of stream."""
        text = self._decoder.decode(b"", final=True)
        if text:
            self._parts.append(text)
        return text

    def has_unretrieved(self) -> bool:
        return self._retrieved_index < len(self.full_output)

    def drain(self) -> str:
        """Return unretrieved output up to and including the last newline.

        A trailing partial line stays unretrieved until it is terminated or
        ``drain_all()`` is called.
        """
        text = self.full_output
        end = text.rfind("\n", self._retrieved_index)
        if end == -1:
            return ""
        delta = text[self._retrieved_index : end + 1]
        self._retrieved_index = end + 1
        return delta

    def drain_all(self) -> str:
        """Return everything not yet retrieved, partial last line included."""
        text = self.full_output
        delta = text[self._retrieved_index :]
        self._retrieved_index = len(text)
        return delta

    def reset(self) -> None:
        self._decoder.reset()
        self._parts.clear()
        self._text = ""
        self._retrieved_index = 0

    def __len__(self) -> int:
        return len(self.full_output)
