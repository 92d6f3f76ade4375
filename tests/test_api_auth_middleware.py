"""Unit tests for APIAuthMiddleware."""

from __future__ import annotations

from datetime import timedelta

import pytest
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from gitops.foundation.context import get_current_principal, get_optional_principal
from gitops.server.auth.middleware import APIAuthMiddleware, is_public_route
from gitops.server.auth.resolvers import AdminCookiePrincipalResolver, CompositePrincipalResolver
from gitops.server.auth.tokens import HMACTokenSignerVerifier


class _StubAuthServer:
    """Minimal stand-in exposing the resolver the middleware uses."""

    def __init__(self, signer: HMACTokenSignerVerifier) -> None:
        self._resolver = CompositePrincipalResolver([AdminCookiePrincipalResolver(signer)])

    def principal_resolver(self) -> CompositePrincipalResolver:
        return self._resolver


async def _whoami(request: Request) -> JSONResponse:
    principal = get_current_principal()
    return JSONResponse({"id": principal.id, "state_id": request.state.principal.id})


async def _flags(request: Request) -> JSONResponse:
    return JSONResponse({"principal": get_optional_principal() is not None})


def _make_app(
    auth_server: _StubAuthServer | None,
    public_routes: list[str] | None = None,
) -> Starlette:
    return Starlette(
        routes=[
            Route("/v1/whoami", _whoami),
            Route("/v1/featureflags", _flags),
            Route("/v1/featureflags/extra", _flags),
        ],
        middleware=[
            Middleware(
                APIAuthMiddleware,
                auth_server=auth_server,
                public_routes=public_routes or ["/v1/featureflags"],
            )
        ],
    )


@pytest.fixture()
def signer() -> HMACTokenSignerVerifier:
    return HMACTokenSignerVerifier(timedelta(hours=1))


@pytest.mark.unit
class TestIsPublicRoute:
    def test_exact_match(self) -> None:
        assert is_public_route("/v1/featureflags", ["/v1/featureflags"])

    @pytest.mark.parametrize("path", ["/v1/featureflags/", "/v1/featureflags/extra", "/v1"])
    def test_no_prefix_or_trailing_slash_match(self, path: str) -> None:
        assert not is_public_route(path, ["/v1/featureflags"])


@pytest.mark.unit
class TestAPIAuthMiddleware:
    def test_public_route_needs_no_credential(self, signer: HMACTokenSignerVerifier) -> None:
        client = TestClient(_make_app(_StubAuthServer(signer)))

        response = client.get("/v1/featureflags")

        assert response.status_code == 200
        assert response.json() == {"principal": False}

    def test_public_route_is_exact(self, signer: HMACTokenSignerVerifier) -> None:
        client = TestClient(_make_app(_StubAuthServer(signer)))
        assert client.get("/v1/featureflags/extra").status_code == 401

    def test_missing_credential_rejected(self, signer: HMACTokenSignerVerifier) -> None:
        client = TestClient(_make_app(_StubAuthServer(signer)))

        response = client.get("/v1/whoami")

        assert response.status_code == 401
        assert response.headers["content-type"] == "application/problem+json"
        assert response.headers["WWW-Authenticate"].startswith('Bearer realm="API"')
        body = response.json()
        assert body["detail"] == "Authentication required"
        assert body["error_code"] == "AUTHENTICATION_REQUIRED"

    def test_unknown_route_still_requires_auth(self, signer: HMACTokenSignerVerifier) -> None:
        client = TestClient(_make_app(_StubAuthServer(signer)))
        assert client.get("/").status_code == 401

    def test_valid_admin_cookie_sets_principal(self, signer: HMACTokenSignerVerifier) -> None:
        client = TestClient(_make_app(_StubAuthServer(signer)))
        client.cookies.set("id_token", signer.sign())

        response = client.get("/v1/whoami")

        assert response.status_code == 200
        assert response.json() == {"id": "admin", "state_id": "admin"}

    def test_invalid_cookie_rejected(self, signer: HMACTokenSignerVerifier) -> None:
        client = TestClient(_make_app(_StubAuthServer(signer)))
        client.cookies.set("id_token", HMACTokenSignerVerifier(timedelta(hours=1)).sign())

        assert client.get("/v1/whoami").status_code == 401

    def test_server_from_app_state(self, signer: HMACTokenSignerVerifier) -> None:
        app = _make_app(None)
        app.state.auth_server = _StubAuthServer(signer)
        client = TestClient(app)
        client.cookies.set("id_token", signer.sign())

        assert client.get("/v1/whoami").status_code == 200

    def test_no_server_configured_rejects(self) -> None:
        client = TestClient(_make_app(None))
        assert client.get("/v1/whoami").status_code == 401

    def test_principal_not_visible_after_request(self, signer: HMACTokenSignerVerifier) -> None:
        client = TestClient(_make_app(_StubAuthServer(signer)))
        client.cookies.set("id_token", signer.sign())

        client.get("/v1/whoami")

        assert get_optional_principal() is None
