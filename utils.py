"""Utility helpers shared across server modules."""

from pathlib import Path


def file_exists(path: str) -> bool:
    """Default existence check, resolved against the process working directory."""
    return Path(path).exists()


def lookup_path(request_path: str) -> str:
    # Literal concatenation, not a join: "/a" -> "./a", "/../x" -> "./../x".
    return f".{request_path}"
