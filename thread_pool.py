"""Bounded pool of worker threads, each owning one client connection at a time."""

from __future__ import annotations

import logging
import queue
import socket
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)

ClientAddress = tuple[str, int]
ConnectionJob = tuple[socket.socket, ClientAddress]
ConnectionHandler = Callable[[socket.socket, ClientAddress], None]


class ThreadPool:
    """Run ``handler`` for accepted connections on a fixed set of workers.

    Accepted sockets wait in a bounded queue until a worker is free. The pool
    owns every socket it accepted through ``submit``: sockets still queued when
    ``shutdown`` runs are closed so their peers see EOF.
    """

    def __init__(self, worker_count: int, queue_size: int, handler: ConnectionHandler) -> None:
        if worker_count <= 0:
            raise ValueError("worker_count must be positive")
        if queue_size <= 0:
            raise ValueError("queue_size must be positive")

        self._handler = handler
        self._worker_count = worker_count
        self._connections: queue.Queue[ConnectionJob] = queue.Queue(maxsize=queue_size)
        self._stopping = threading.Event()
        self._workers: list[threading.Thread] = []
        self._shutdown_lock = threading.Lock()

    @property
    def worker_count(self) -> int:
        return self._worker_count

    @property
    def threads(self) -> tuple[threading.Thread, ...]:
        return tuple(self._workers)

    @property
    def queued(self) -> int:
        return self._connections.qsize()

    def start(self) -> None:
        for index in range(self._worker_count):
            worker = threading.Thread(
                target=self._serve_connections,
                name=f"probe-worker-{index}",
                daemon=True,
            )
            self._workers.append(worker)
            worker.start()

    def submit(self, client_socket: socket.socket, address: ClientAddress) -> bool:
        """Queue a connection; ``False`` means the caller still owns the socket."""
        with self._shutdown_lock:
            if self._stopping.is_set():
                return False
            try:
                self._connections.put_nowait((client_socket, address))
            except queue.Full:
                return False
            return True

    def shutdown(self) -> None:
        with self._shutdown_lock:
            if self._stopping.is_set():
                return
            self._stopping.set()

        for worker in self._workers:
            worker.join(timeout=1.0)

        dropped = self._close_queued()
        if dropped:
            logger.info("Closed %s queued connection(s) on shutdown", dropped)

    def _close_queued(self) -> int:
        dropped = 0
        while True:
            try:
                client_socket, _address = self._connections.get_nowait()
            except queue.Empty:
                return dropped
            try:
                client_socket.close()
            except OSError:
                pass
            dropped += 1

    def _serve_connections(self) -> None:
        while not self._stopping.is_set():
            try:
                client_socket, address = self._connections.get(timeout=0.2)
            except queue.Empty:
                continue
            try:
                self._handler(client_socket, address)
            except Exception:
                logger.exception("Unhandled error serving client=%s", address[0])
                client_socket.close()
