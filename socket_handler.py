"""Low-level socket read/write utilities."""

from __future__ import annotations

import socket

from config import BUFFER_SIZE


class ConnectionClosedError(OSError):
    """Raised when the peer has gone away while a response is being written."""


def receive_delivery(client_socket: socket.socket, buffer_size: int = BUFFER_SIZE) -> bytes:
    """Read one delivery from the socket; ``b""`` means the peer closed."""
    return client_socket.recv(buffer_size)


def write_response(client_socket: socket.socket, payload: bytes) -> int:
    """Write a complete response payload and return the byte count."""
    try:
        client_socket.sendall(payload)
    except (BrokenPipeError, ConnectionResetError) as exc:
        raise ConnectionClosedError("Peer closed before response was written") from exc
    return len(payload)


def send_pending(client_socket: socket.socket, payload: memoryview) -> int:
    """Non-blocking partial write; returns how many bytes the kernel accepted."""
    try:
        return client_socket.send(payload)
    except BlockingIOError:
        return 0
    except (BrokenPipeError, ConnectionResetError) as exc:
        raise ConnectionClosedError("Peer closed before response was written") from exc
