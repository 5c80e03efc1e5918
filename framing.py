"""Per-connection framing of inbound bytes into request payloads."""

from __future__ import annotations

import enum

from config import MAX_LINE_BYTES


class FramingError(ValueError):
    """Raised when inbound bytes cannot be framed into request lines."""


class FramerState(enum.Enum):
    AWAITING_LINE = "awaiting_line"
    LINE_READY = "line_ready"
    CLOSED = "closed"


class ChunkFramer:
    """Treat every delivery as one complete request."""

    def __init__(self) -> None:
        self.state = FramerState.AWAITING_LINE

    def feed(self, data: bytes) -> list[bytes]:
        if self.state is FramerState.CLOSED:
            raise FramingError("Framer is closed")
        if not data:
            self.state = FramerState.AWAITING_LINE
            return []
        self.state = FramerState.LINE_READY
        return [data]

    def close(self) -> None:
        self.state = FramerState.CLOSED


class LineFramer:
    """Accumulate bytes until a newline and emit complete lines.

    The terminator (``\\n`` or ``\\r\\n``) is removed from each emitted line;
    incomplete tails stay buffered for the next delivery.
    """

    def __init__(self, max_line_bytes: int = MAX_LINE_BYTES) -> None:
        if max_line_bytes <= 0:
            raise ValueError("max_line_bytes must be positive")
        self.max_line_bytes = max_line_bytes
        self.state = FramerState.AWAITING_LINE
        self._buffer = bytearray()

    @property
    def pending(self) -> bytes:
        return bytes(self._buffer)

    def feed(self, data: bytes) -> list[bytes]:
        """Buffer ``data`` and return every line it completes.

        The state is ``LINE_READY`` after a call that returned lines and
        ``AWAITING_LINE`` after one that did not.
        """
        if self.state is FramerState.CLOSED:
            raise FramingError("Framer is closed")

        self._buffer.extend(data)
        lines: list[bytes] = []
        while True:
            line_end = self._buffer.find(b"\n")
            if line_end == -1:
                break
            line = bytes(self._buffer[:line_end])
            del self._buffer[: line_end + 1]
            if line.endswith(b"\r"):
                line = line[:-1]
            if len(line) > self.max_line_bytes:
                self.close()
                raise FramingError("Request line exceeded MAX_LINE_BYTES")
            lines.append(line)

        if len(self._buffer) > self.max_line_bytes:
            self.close()
            raise FramingError("Request line exceeded MAX_LINE_BYTES")

        self.state = FramerState.LINE_READY if lines else FramerState.AWAITING_LINE
        return lines

    def close(self) -> None:
        self.state = FramerState.CLOSED
        self._buffer.clear()


Framer = ChunkFramer | LineFramer

FRAMING_MODES = ("chunk", "line")


def build_framer(mode: str, *, max_line_bytes: int = MAX_LINE_BYTES) -> Framer:
    if mode == "chunk":
        return ChunkFramer()
    if mode == "line":
        return LineFramer(max_line_bytes=max_line_bytes)
    raise ValueError(f"Unsupported framing mode: {mode}")
