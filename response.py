"""Literal status lines written back to clients."""

OK_RESPONSE: bytes = b"HTTP/1.0 200 OK"
# Status 400 with reason NOT FOUND, not 404.
NOT_FOUND_RESPONSE: bytes = b"HTTP/1.0 400 NOT FOUND"

STATUS_LINES: dict[int, bytes] = {
    200: OK_RESPONSE,
    400: NOT_FOUND_RESPONSE,
}


def status_code_of(payload: bytes) -> int | None:
    for status_code, line in STATUS_LINES.items():
        if payload == line:
            return status_code
    return None
