"""Main probe server entry point and connection lifecycle orchestration."""

from __future__ import annotations

import argparse
import itertools
import json
import logging
import selectors
import socket
import sys
import threading
import time
from collections import deque
from dataclasses import dataclass, field

from config import (
    BUFFER_SIZE,
    FRAMING_MODE,
    HOST,
    LISTEN_BACKLOG,
    LOG_FORMAT,
    MAX_LINE_BYTES,
    PORT,
    REQUEST_QUEUE_SIZE,
    SELECT_TIMEOUT_SECS,
    SERVER_ENGINE,
    WORKER_COUNT,
)
from dispatcher import ExistsCheck, RequestDispatcher
from framing import FRAMING_MODES, Framer, FramingError, build_framer
from metrics import MetricsRegistry
from request import ParseError
from response import status_code_of
from socket_handler import receive_delivery, send_pending, write_response
from thread_pool import ThreadPool

logger = logging.getLogger(__name__)

ENGINES = ("selectors", "threadpool")


@dataclass(slots=True)
class ConnectionState:
    sock: socket.socket
    address: tuple[str, int]
    connection_id: int
    framer: Framer
    pending_writes: deque[memoryview] = field(default_factory=deque)
    closing: bool = False


class ProbeServer:
    def __init__(
        self,
        host: str = HOST,
        port: int = PORT,
        exists: ExistsCheck | None = None,
        worker_count: int = WORKER_COUNT,
        request_queue_size: int = REQUEST_QUEUE_SIZE,
        *,
        engine: str = SERVER_ENGINE,
        framing: str = FRAMING_MODE,
        max_line_bytes: int = MAX_LINE_BYTES,
        log_format: str = LOG_FORMAT,
    ) -> None:
        if engine not in ENGINES:
            raise ValueError(f"Unsupported engine: {engine}")
        if framing not in FRAMING_MODES:
            raise ValueError(f"Unsupported framing mode: {framing}")

        self.host = host
        self.port = port
        self.dispatcher = RequestDispatcher(exists)
        self.worker_count = worker_count
        self.request_queue_size = request_queue_size
        self.engine = engine
        self.framing = framing
        self.max_line_bytes = max_line_bytes
        self.log_format = log_format

        self._pool: ThreadPool | None = None
        self._selector_connections: dict[int, ConnectionState] = {}
        self._connection_ids = itertools.count(1)
        self._stop_requested = threading.Event()
        self.metrics = MetricsRegistry()

    def start(self) -> None:
        """Bind the listener and serve connections until ``stop()`` is called.

        Both engines poll the stop flag every ``SELECT_TIMEOUT_SECS``, so
        ``stop()`` takes effect from any thread, including before ``start()``
        has reached its loop.
        """
        try:
            if self.engine == "threadpool":
                self._start_threadpool()
            else:
                self._start_selectors()
        finally:
            logger.info(
                "Server stopped metrics=%s",
                json.dumps(self.metrics.snapshot(), sort_keys=True),
            )

    def stop(self) -> None:
        self._stop_requested.set()
        pool = self._pool
        if pool is not None:
            pool.shutdown()

    def _bind(self, server_socket: socket.socket) -> None:
        server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        server_socket.bind((self.host, self.port))
        server_socket.listen(LISTEN_BACKLOG)
        self.port = server_socket.getsockname()[1]
        logger.info("Server listening on port %s", self.port)

    def _build_framer(self) -> Framer:
        return build_framer(self.framing, max_line_bytes=self.max_line_bytes)

    def _process_delivery(
        self,
        framer: Framer,
        chunk: bytes,
        *,
        address: tuple[str, int],
        connection_id: int,
    ) -> list[bytes]:
        """Run every framed payload in ``chunk`` through the dispatcher.

        ``ParseError`` and ``FramingError`` propagate; the caller owns the
        connection and decides how it ends.
        """
        self.metrics.record_delivery()
        responses: list[bytes] = []
        for payload in framer.feed(chunk):
            started_at = time.perf_counter()
            response = self.dispatcher.handle_delivery(payload)
            self._record_and_log(
                address=address,
                connection_id=connection_id,
                response=response,
                bytes_in=len(payload),
                started_at=started_at,
            )
            if response is not None:
                responses.append(response)
        return responses

    def _log_rejected_delivery(
        self,
        exc: ParseError | FramingError,
        *,
        address: tuple[str, int],
        connection_id: int,
    ) -> None:
        if isinstance(exc, ParseError):
            self.metrics.record_parse_error()
        else:
            self.metrics.record_framing_error()
        logger.warning(
            "Closing connection_id=%s client=%s: %s",
            connection_id,
            address[0],
            exc,
        )

    # -- threadpool engine -------------------------------------------------

    def _start_threadpool(self) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server_socket:
            self._bind(server_socket)
            server_socket.settimeout(SELECT_TIMEOUT_SECS)
            pool = ThreadPool(
                worker_count=self.worker_count,
                queue_size=self.request_queue_size,
                handler=self._handle_client,
            )
            self._pool = pool
            pool.start()

            try:
                while not self._stop_requested.is_set():
                    try:
                        client_socket, address = server_socket.accept()
                    except socket.timeout:
                        continue
                    except OSError:
                        break

                    if not pool.submit(client_socket, address):
                        self.metrics.connection_rejected()
                        logger.warning("Worker queue full; dropping client=%s", address[0])
                        client_socket.close()
            finally:
                pool.shutdown()

    def _handle_client(self, client_socket: socket.socket, address: tuple[str, int]) -> None:
        connection_id = next(self._connection_ids)
        framer = self._build_framer()
        with client_socket:
            self.metrics.connection_opened()
            # Polling timeout so workers notice stop(); idle clients are never dropped.
            client_socket.settimeout(SELECT_TIMEOUT_SECS)
            try:
                while not self._stop_requested.is_set():
                    try:
                        chunk = receive_delivery(client_socket, BUFFER_SIZE)
                    except socket.timeout:
                        continue
                    except OSError as exc:
                        self.metrics.record_read_error(exc.__class__.__name__)
                        return

                    if not chunk:
                        return

                    try:
                        responses = self._process_delivery(
                            framer,
                            chunk,
                            address=address,
                            connection_id=connection_id,
                        )
                    except (ParseError, FramingError) as exc:
                        self._log_rejected_delivery(
                            exc,
                            address=address,
                            connection_id=connection_id,
                        )
                        return

                    for response in responses:
                        try:
                            write_response(client_socket, response)
                        except OSError as exc:
                            self.metrics.record_write_error(exc.__class__.__name__)
                            return
            finally:
                framer.close()
                self.metrics.connection_closed()

    # -- selectors engine --------------------------------------------------

    def _start_selectors(self) -> None:
        with (
            socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server_socket,
            selectors.DefaultSelector() as selector,
        ):
            self._bind(server_socket)
            server_socket.setblocking(False)
            selector.register(server_socket, selectors.EVENT_READ, data=None)

            try:
                while not self._stop_requested.is_set():
                    events = selector.select(timeout=SELECT_TIMEOUT_SECS)
                    for key, mask in events:
                        if key.data is None:
                            self._accept_selector_clients(server_socket, selector)
                            continue

                        state: ConnectionState = key.data
                        if mask & selectors.EVENT_READ:
                            self._handle_selector_read(state, selector)
                        if mask & selectors.EVENT_WRITE:
                            self._handle_selector_write(state, selector)
            finally:
                for state in list(self._selector_connections.values()):
                    self._close_selector_connection(state, selector)
                self._selector_connections.clear()

    def _accept_selector_clients(
        self,
        server_socket: socket.socket,
        selector: selectors.BaseSelector,
    ) -> None:
        while True:
            try:
                client_socket, address = server_socket.accept()
            except BlockingIOError:
                return
            except OSError:
                return

            client_socket.setblocking(False)
            state = ConnectionState(
                sock=client_socket,
                address=address,
                connection_id=next(self._connection_ids),
                framer=self._build_framer(),
            )
            self._selector_connections[client_socket.fileno()] = state
            selector.register(client_socket, selectors.EVENT_READ, data=state)
            self.metrics.connection_opened()

    def _handle_selector_read(
        self,
        state: ConnectionState,
        selector: selectors.BaseSelector,
    ) -> None:
        try:
            chunk = receive_delivery(state.sock, BUFFER_SIZE)
        except BlockingIOError:
            return
        except OSError as exc:
            self.metrics.record_read_error(exc.__class__.__name__)
            self._close_selector_connection(state, selector)
            return

        if not chunk:
            state.closing = True
            self._update_selector_interest(state, selector)
            return

        try:
            responses = self._process_delivery(
                state.framer,
                chunk,
                address=state.address,
                connection_id=state.connection_id,
            )
        except (ParseError, FramingError) as exc:
            self._log_rejected_delivery(
                exc,
                address=state.address,
                connection_id=state.connection_id,
            )
            state.closing = True
        else:
            state.pending_writes.extend(memoryview(response) for response in responses)

        self._update_selector_interest(state, selector)

    def _handle_selector_write(
        self,
        state: ConnectionState,
        selector: selectors.BaseSelector,
    ) -> None:
        while state.pending_writes:
            view = state.pending_writes[0]
            try:
                sent = send_pending(state.sock, view)
            except OSError as exc:
                self.metrics.record_write_error(exc.__class__.__name__)
                self._close_selector_connection(state, selector)
                return

            if sent == 0:
                break
            if sent < len(view):
                state.pending_writes[0] = view[sent:]
                break
            state.pending_writes.popleft()

        self._update_selector_interest(state, selector)

    def _update_selector_interest(
        self,
        state: ConnectionState,
        selector: selectors.BaseSelector,
    ) -> None:
        fileno = state.sock.fileno()
        if fileno not in self._selector_connections:
            return

        has_pending_write = bool(state.pending_writes)
        if state.closing and not has_pending_write:
            self._close_selector_connection(state, selector)
            return

        events = selectors.EVENT_READ
        if has_pending_write:
            events |= selectors.EVENT_WRITE
        if state.closing:
            events = selectors.EVENT_WRITE

        try:
            selector.modify(state.sock, events, data=state)
        except (KeyError, ValueError, OSError):
            self._close_selector_connection(state, selector)

    def _close_selector_connection(
        self,
        state: ConnectionState,
        selector: selectors.BaseSelector,
    ) -> None:
        fileno = state.sock.fileno()
        if fileno not in self._selector_connections:
            return

        try:
            selector.unregister(state.sock)
        except (KeyError, ValueError):
            pass

        state.framer.close()
        state.pending_writes.clear()
        try:
            state.sock.close()
        except OSError:
            pass

        self._selector_connections.pop(fileno, None)
        self.metrics.connection_closed()

    def _record_and_log(
        self,
        *,
        address: tuple[str, int],
        connection_id: int,
        response: bytes | None,
        bytes_in: int,
        started_at: float,
    ) -> None:
        duration_ms = (time.perf_counter() - started_at) * 1000
        status_code = status_code_of(response) if response is not None else None
        bytes_out = len(response) if response is not None else 0
        self.metrics.record_response(status_code, bytes_out)
        event = {
            "client": address[0],
            "status": status_code if status_code is not None else "-",
            "engine": self.engine,
            "connection_id": connection_id,
            "bytes_in": bytes_in,
            "bytes_out": bytes_out,
            "latency_ms": round(duration_ms, 3),
        }
        if self.log_format == "json":
            logger.info(json.dumps(event, sort_keys=True))
            return

        logger.info(
            (
                "client=%s status=%s engine=%s connection_id=%s "
                "bytes_in=%s bytes_out=%s duration_ms=%.2f"
            ),
            event["client"],
            event["status"],
            event["engine"],
            event["connection_id"],
            event["bytes_in"],
            event["bytes_out"],
            duration_ms,
        )


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run file probe server")
    parser.add_argument("--host", default=HOST)
    parser.add_argument("--port", type=int, default=PORT)
    parser.add_argument("--engine", choices=ENGINES, default=SERVER_ENGINE)
    parser.add_argument("--framing", choices=FRAMING_MODES, default=FRAMING_MODE)
    parser.add_argument("--workers", type=int, default=WORKER_COUNT)
    parser.add_argument("--log-format", choices=["plain", "json"], default=LOG_FORMAT)
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), stream=sys.stdout)
    server = ProbeServer(
        host=args.host,
        port=args.port,
        worker_count=args.workers,
        engine=args.engine,
        framing=args.framing,
        log_format=args.log_format,
    )
    try:
        server.start()
    except KeyboardInterrupt:
        server.stop()


if __name__ == "__main__":
    main()
