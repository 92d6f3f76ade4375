"""FastAPI application factory for the GitOps control-plane API.

Provides :func:`create_app`, which wires the auth routes, the API auth
middleware, CORS, request IDs and the RFC 7807 error handlers around any
extra API routers.

Middleware order, outermost first:
  Request -> RequestId -> CORS -> APIAuth -> Route
"""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import TYPE_CHECKING

import httpx
from starlette.middleware.cors import CORSMiddleware

from fastapi import FastAPI
from gitops.infra.fastapi.error_handlers import register_exception_handlers
from gitops.infra.fastapi.middleware.request_id import RequestIdMiddleware
from gitops.infra.fastapi.settings import AppSettings
from gitops.infra.observability import configure_logging, get_logger
from gitops.server.auth.middleware import APIAuthMiddleware
from gitops.server.auth.secrets import KubernetesSecretReader
from gitops.server.auth.server import AuthServer, auth_route_paths, build_auth_router
from gitops.server.auth.settings import AuthSettings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import APIRouter
    from gitops.server.auth.secrets import AdminPasswordReader

logger = logging.getLogger(__name__)

_DEFAULT_HTTP_TIMEOUT = 10.0


def create_app(
    settings: AppSettings | None = None,
    *,
    auth_settings: AuthSettings | None = None,
    auth_server: AuthServer | None = None,
    secret_reader: AdminPasswordReader | None = None,
    http_client: httpx.AsyncClient | None = None,
    extra_routers: list[APIRouter] | None = None,
) -> FastAPI:
    """Create the API application with authentication in front of every route.

    When ``auth_server`` is omitted, the lifespan builds one on startup
    (OIDC discovery plus a fresh signing secret) and stores it on
    ``app.state.auth_server``. An ``httpx.AsyncClient`` is created for it
    unless ``http_client`` is given; a client created here is closed on
    shutdown.

    Args:
        settings: Application settings. If ``None``, loaded from environment.
        auth_settings: Auth settings. Defaults to ``auth_server.config`` or
            the environment.
        auth_server: Pre-built auth server, mainly for tests.
        secret_reader: Admin password source. Defaults to the Kubernetes
            secret named in ``auth_settings``.
        http_client: Client used to talk to the identity provider.
        extra_routers: API routers to mount behind the auth middleware.

    Returns:
        Configured FastAPI application instance.
    """
    settings = settings or AppSettings()
    if auth_settings is None:
        auth_settings = auth_server.config if auth_server is not None else AuthSettings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging()
        app_logger = get_logger(__name__)
        async with AsyncExitStack() as stack:
            if auth_server is None:
                client = http_client
                if client is None:
                    client = await stack.enter_async_context(
                        httpx.AsyncClient(timeout=_DEFAULT_HTTP_TIMEOUT)
                    )
                reader = secret_reader or KubernetesSecretReader.from_settings(auth_settings)
                app.state.auth_server = await AuthServer.create(
                    auth_settings,
                    http_client=client,
                    secret_reader=reader,
                )
            app_logger.info(
                "application_started",
                oidc_enabled=app.state.auth_server.oidc_enabled(),
                route_prefix=auth_settings.route_prefix,
            )
            yield
            app_logger.info("application_stopping")

    app = FastAPI(
        title=settings.title,
        version=settings.version,
        description=settings.description,
        docs_url=settings.docs_url,
        redoc_url=settings.redoc_url,
        openapi_url=settings.openapi_url,
        debug=settings.debug,
        lifespan=lifespan,
    )
    if auth_server is not None:
        app.state.auth_server = auth_server

    # Starlette middleware is LIFO: the last one added runs first
    public_routes = [*auth_settings.public_routes, *auth_route_paths(auth_settings.route_prefix)]
    app.add_middleware(
        APIAuthMiddleware,
        auth_server=auth_server,
        public_routes=public_routes,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors.allow_origins,
        allow_credentials=settings.cors.allow_credentials,
        allow_methods=settings.cors.allow_methods,
        allow_headers=settings.cors.allow_headers,
        expose_headers=settings.cors.expose_headers,
    )
    app.add_middleware(RequestIdMiddleware)

    register_exception_handlers(app)

    app.include_router(build_auth_router(auth_server, auth_settings.route_prefix))
    for router in extra_routers or []:
        app.include_router(router)
        logger.info("router_included", extra={"router_prefix": router.prefix})

    return app
