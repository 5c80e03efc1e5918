"""Map parsed request lines to existence-check responses."""

from __future__ import annotations

import logging
from collections.abc import Callable

from request import Request, decode_request
from response import NOT_FOUND_RESPONSE, OK_RESPONSE
from router import Router
from utils import file_exists, lookup_path

logger = logging.getLogger(__name__)

ExistsCheck = Callable[[str], bool]


class RequestDispatcher:
    """Stateless request-to-response mapping for one delivered chunk.

    The existence check is injected so callers can substitute the filesystem
    with any ``str -> bool`` callable.
    """

    def __init__(self, exists: ExistsCheck | None = None, router: Router | None = None) -> None:
        self.exists = exists or file_exists
        self.router = router or self._build_default_router()

    def _build_default_router(self) -> Router:
        router = Router()
        router.add_route("GET", self.handle_get)
        return router

    def handle_delivery(self, payload: bytes) -> bytes | None:
        """Decode, parse and dispatch one delivery.

        ``ParseError`` is not caught here; the connection owner decides what a
        malformed delivery does to the connection.
        """
        return self.dispatch(decode_request(payload))

    def dispatch(self, request: Request) -> bytes | None:
        logger.info("%s %s %s", request.method, request.path, request.protocol)
        handler = self.router.resolve(request.method)
        if handler is None:
            logger.debug("No handler for method %r; leaving request unanswered", request.method)
            return None
        return handler(request)

    def handle_get(self, request: Request) -> bytes:
        if self.exists(lookup_path(request.path)):
            return OK_RESPONSE
        return NOT_FOUND_RESPONSE
