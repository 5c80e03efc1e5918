"""Thread-safe in-memory counters for the probe server."""

from __future__ import annotations

import threading
from collections import Counter


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._connections_opened = 0
        self._connections_closed = 0
        self._active_connections = 0
        self._connections_rejected = 0
        self._deliveries_total = 0
        self._unanswered_total = 0
        self._parse_errors_total = 0
        self._framing_errors_total = 0
        self._status_counts: Counter[str] = Counter()
        self._bytes_out_total = 0
        self._read_errors_by_type: Counter[str] = Counter()
        self._write_errors_by_type: Counter[str] = Counter()

    def connection_opened(self) -> None:
        with self._lock:
            self._connections_opened += 1
            self._active_connections += 1

    def connection_closed(self) -> None:
        with self._lock:
            self._connections_closed += 1
            self._active_connections = max(0, self._active_connections - 1)

    def connection_rejected(self) -> None:
        with self._lock:
            self._connections_rejected += 1

    def record_delivery(self) -> None:
        with self._lock:
            self._deliveries_total += 1

    def record_response(self, status_code: int | None, bytes_out: int) -> None:
        with self._lock:
            if status_code is None:
                self._unanswered_total += 1
                return
            self._status_counts[str(status_code)] += 1
            self._bytes_out_total += bytes_out

    def record_parse_error(self) -> None:
        with self._lock:
            self._parse_errors_total += 1

    def record_framing_error(self) -> None:
        with self._lock:
            self._framing_errors_total += 1

    def record_read_error(self, error_type: str) -> None:
        with self._lock:
            self._read_errors_by_type[error_type] += 1

    def record_write_error(self, error_type: str) -> None:
        with self._lock:
            self._write_errors_by_type[error_type] += 1

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            return {
                "connections_opened": self._connections_opened,
                "connections_closed": self._connections_closed,
                "active_connections": self._active_connections,
                "connections_rejected": self._connections_rejected,
                "deliveries_total": self._deliveries_total,
                "unanswered_total": self._unanswered_total,
                "parse_errors_total": self._parse_errors_total,
                "framing_errors_total": self._framing_errors_total,
                "status_counts": dict(self._status_counts),
                "bytes_out_total": self._bytes_out_total,
                "read_errors_by_type": dict(self._read_errors_by_type),
                "write_errors_by_type": dict(self._write_errors_by_type),
            }
