"""API auth middleware: gate every non-public route behind principal resolution.

Request flow:
1. Path equals an entry of the public-route list -> forward untouched
2. Resolve a principal with the auth server's composite resolver
3. Failure -> 401 problem response, handler never runs
4. Success -> principal set on the context variable and ``request.state``
   for the rest of the request, then forward

Design decisions:
- Use BaseHTTPMiddleware and return the 401 directly, since exceptions
  raised in dispatch do not reach the app's exception handlers.
- Public routes match by exact path equality; no prefixes, no patterns.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from starlette.middleware.base import BaseHTTPMiddleware

from gitops.foundation.context import clear_principal_context, set_principal_context
from gitops.foundation.exceptions import DomainError
from gitops.infra.fastapi.error_handlers import problem_response
from gitops.server.auth.resolvers import NoPrincipalError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from starlette.requests import Request
    from starlette.responses import Response

    from gitops.server.auth.server import AuthServer

logger = logging.getLogger(__name__)

AUTHENTICATION_REQUIRED = "Authentication required"


def is_public_route(path: str, public_routes: Iterable[str]) -> bool:
    """True when ``path`` equals one of ``public_routes`` exactly."""
    return any(path == route for route in public_routes)


class APIAuthMiddleware(BaseHTTPMiddleware):
    """Require a resolved principal for every request outside the public routes.

    Args:
        app: ASGI application (passed by Starlette).
        auth_server: Server whose resolver is used. When None, the server is
            read from ``request.app.state.auth_server`` on each request, so it
            can be built in the application lifespan.
        public_routes: Exact paths forwarded without authentication.
    """

    def __init__(
        self,
        app: Any,
        auth_server: AuthServer | None = None,
        public_routes: Iterable[str] = (),
    ) -> None:
        super().__init__(app)
        self._auth_server = auth_server
        self._public_routes = tuple(public_routes)

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        if is_public_route(request.url.path, self._public_routes):
            return await call_next(request)

        server = self._auth_server or getattr(request.app.state, "auth_server", None)
        if server is None:
            logger.error("auth_server_not_configured", extra={"path": request.url.path})
            return self._unauthenticated(request)

        try:
            principal = await server.principal_resolver().resolve(request)
        except DomainError as exc:
            logger.info(
                "api_auth_rejected",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "error_code": exc.error_code,
                },
            )
            return self._unauthenticated(request)

        request.state.principal = principal
        principal_token = set_principal_context(principal)
        try:
            return await call_next(request)
        finally:
            clear_principal_context(principal_token)

    @staticmethod
    def _unauthenticated(request: Request) -> Response:
        return problem_response(request, NoPrincipalError(AUTHENTICATION_REQUIRED))
