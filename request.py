"""Request line model and parser."""

from dataclasses import dataclass

PARSE_ERROR_MESSAGE = "Invalid request string format"


class ParseError(ValueError):
    """Raised when a request line does not split into exactly three tokens."""

    def __init__(self, message: str = PARSE_ERROR_MESSAGE) -> None:
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class Request:
    method: str
    path: str
    protocol: str


def parse_request(request_string: str) -> Request:
    """Split a request line on single spaces into method, path and protocol.

    Empty tokens produced by consecutive spaces are kept and count toward the
    token total, so ``"GET  /x HTTP/1.0"`` is rejected.
    """
    parts = request_string.split(" ")
    if len(parts) != 3:
        raise ParseError()

    method, path, protocol = parts
    return Request(method=method, path=path, protocol=protocol)


def decode_request(payload: bytes) -> Request:
    return parse_request(payload.decode("utf-8", errors="replace"))
