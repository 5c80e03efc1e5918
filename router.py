"""Method dispatch table for parsed requests."""

from collections.abc import Callable

from request import Request

Handler = Callable[[Request], bytes | None]


class Router:
    def __init__(self) -> None:
        self._routes: dict[str, Handler] = {}

    def add_route(self, method: str, handler: Handler) -> None:
        # Methods match verbatim; "get" and "GET" are different routes.
        if not method:
            raise ValueError("method cannot be empty")
        self._routes[method] = handler

    def resolve(self, method: str) -> Handler | None:
        return self._routes.get(method)

    @property
    def methods(self) -> tuple[str, ...]:
        return tuple(self._routes)
