"""Configuration constants for the file probe server."""

HOST: str = "0.0.0.0"
PORT: int = 3000
BUFFER_SIZE: int = 4096
LISTEN_BACKLOG: int = 128
SERVER_ENGINE: str = "selectors"
FRAMING_MODE: str = "chunk"
MAX_LINE_BYTES: int = 8192
WORKER_COUNT: int = 8
REQUEST_QUEUE_SIZE: int = 64
SELECT_TIMEOUT_SECS: float = 0.2
LOG_FORMAT: str = "plain"
