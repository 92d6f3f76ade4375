"""Correlation IDs for control-plane requests.

Every HTTP request gets an ``X-Request-ID``. A caller-supplied UUID is
trusted and echoed back; anything else is replaced with a fresh UUID4. The
ID is visible to handlers through :func:`get_request_id`, appears on every
structlog event emitted while the request is in flight, and is reported as
``correlation_id`` on 5xx problem responses.
"""

from __future__ import annotations

import uuid
from contextvars import ContextVar
from typing import TYPE_CHECKING

import structlog
from starlette.datastructures import Headers, MutableHeaders

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Message, Receive, Scope, Send

REQUEST_ID_HEADER = "X-Request-ID"

_current_request_id: ContextVar[str | None] = ContextVar("gitops_request_id", default=None)


def get_request_id() -> str:
    """Correlation ID of the request being served, ``""`` when there is none."""
    return _current_request_id.get() or ""


def resolve_request_id(supplied: str | None) -> str:
    """Keep ``supplied`` when it parses as a UUID, otherwise mint a UUID4."""
    if supplied:
        try:
            return str(uuid.UUID(supplied))
        except ValueError:
            pass
    return str(uuid.uuid4())


class RequestIdMiddleware:
    """ASGI middleware that assigns and propagates request correlation IDs.

    Lifespan messages pass straight through.
    """

    def __init__(self, app: ASGIApp, header_name: str = REQUEST_ID_HEADER) -> None:
        self.app = app
        self.header_name = header_name

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        request_id = resolve_request_id(Headers(scope=scope).get(self.header_name))

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[self.header_name] = request_id
            await send(message)

        token = _current_request_id.set(request_id)
        with structlog.contextvars.bound_contextvars(request_id=request_id):
            try:
                await self.app(scope, receive, send_wrapper)
            finally:
                _current_request_id.reset(token)
