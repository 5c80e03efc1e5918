"""P01 tests for the TCP listener answering existence probes."""

import logging
import socket
import threading
import time
from pathlib import Path

import pytest

from response import NOT_FOUND_RESPONSE, OK_RESPONSE
from server import ProbeServer


def _start_server(**kwargs: object) -> tuple[ProbeServer, threading.Thread]:
    server = ProbeServer(host="127.0.0.1", port=0, **kwargs)
    thread = threading.Thread(target=server.start, daemon=True)
    thread.start()

    deadline = time.time() + 2
    while server.port == 0 and time.time() < deadline:
        time.sleep(0.01)

    if server.port == 0:
        raise RuntimeError("Server did not bind to a port")
    return server, thread


def _stop_server(server: ProbeServer, thread: threading.Thread) -> None:
    server.stop()
    thread.join(timeout=2)


def _recv_exactly(sock: socket.socket, size: int) -> bytes:
    buffer = bytearray()
    while len(buffer) < size:
        chunk = sock.recv(size - len(buffer))
        if not chunk:
            break
        buffer.extend(chunk)
    return bytes(buffer)


def test_get_existing_file_replies_ok() -> None:
    server, thread = _start_server(exists=lambda path: path == "./index.html")
    try:
        with socket.create_connection((server.host, server.port), timeout=2) as client:
            client.sendall(b"GET /index.html HTTP/1.0")
            response = _recv_exactly(client, len(OK_RESPONSE))
            client.settimeout(0.2)
            with pytest.raises(socket.timeout):
                client.recv(1024)
    finally:
        _stop_server(server, thread)

    assert response == b"HTTP/1.0 200 OK"


def test_get_missing_file_replies_not_found() -> None:
    server, thread = _start_server(exists=lambda _path: False)
    try:
        with socket.create_connection((server.host, server.port), timeout=2) as client:
            client.sendall(b"GET /nope.html HTTP/1.0\r\n")
            response = _recv_exactly(client, len(NOT_FOUND_RESPONSE))
    finally:
        _stop_server(server, thread)

    assert response == b"HTTP/1.0 400 NOT FOUND"


def test_filesystem_lookup_is_relative_to_working_directory(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    (tmp_path / "docs").mkdir()
    (tmp_path / "docs" / "readme.txt").write_text("hello")
    monkeypatch.chdir(tmp_path)

    server, thread = _start_server()
    try:
        with socket.create_connection((server.host, server.port), timeout=2) as client:
            client.sendall(b"GET /docs/readme.txt HTTP/1.0")
            found = _recv_exactly(client, len(OK_RESPONSE))
        with socket.create_connection((server.host, server.port), timeout=2) as client:
            client.sendall(b"GET /docs/missing.txt HTTP/1.0")
            missing = _recv_exactly(client, len(NOT_FOUND_RESPONSE))
    finally:
        _stop_server(server, thread)

    assert found == OK_RESPONSE
    assert missing == NOT_FOUND_RESPONSE


def test_non_get_method_gets_no_reply() -> None:
    server, thread = _start_server(exists=lambda _path: True)
    try:
        with socket.create_connection((server.host, server.port), timeout=2) as client:
            client.sendall(b"POST /index.html HTTP/1.0")
            client.settimeout(0.3)
            with pytest.raises(socket.timeout):
                client.recv(1024)
    finally:
        _stop_server(server, thread)

    assert server.metrics.snapshot()["unanswered_total"] == 1


def test_connection_stays_open_for_further_deliveries() -> None:
    server, thread = _start_server(exists=lambda path: path == "./a")
    try:
        with socket.create_connection((server.host, server.port), timeout=2) as client:
            client.sendall(b"GET /a HTTP/1.0")
            first = _recv_exactly(client, len(OK_RESPONSE))
            client.sendall(b"GET /b HTTP/1.0")
            second = _recv_exactly(client, len(NOT_FOUND_RESPONSE))
    finally:
        _stop_server(server, thread)

    assert first == OK_RESPONSE
    assert second == NOT_FOUND_RESPONSE


def test_separate_connections_are_independent() -> None:
    server, thread = _start_server(exists=lambda _path: True)
    try:
        responses = []
        for _ in range(2):
            with socket.create_connection((server.host, server.port), timeout=2) as client:
                client.sendall(b"GET /same HTTP/1.0")
                responses.append(_recv_exactly(client, len(OK_RESPONSE)))
    finally:
        _stop_server(server, thread)

    assert responses == [OK_RESPONSE, OK_RESPONSE]


def test_startup_logs_listening_port(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.INFO, logger="server"):
        server, thread = _start_server(exists=lambda _path: True)
        _stop_server(server, thread)

    assert f"Server listening on port {server.port}" in caplog.text


def test_stop_before_start_is_not_lost() -> None:
    server = ProbeServer(host="127.0.0.1", port=0, exists=lambda _path: True)
    server.stop()

    thread = threading.Thread(target=server.start, daemon=True)
    thread.start()
    thread.join(timeout=2)

    assert not thread.is_alive()
