"""End-to-end scenarios: API routes behind the auth middleware."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi import APIRouter
from fastapi.testclient import TestClient

from gitops.infra.fastapi.app_factory import create_app
from gitops.server.auth.dependencies import CurrentPrincipal
from tests.conftest import ADMIN_PASSWORD, unsigned_token

if TYPE_CHECKING:
    from collections.abc import Iterator

    import httpx

    from gitops.server.auth.secrets import StaticSecretReader
    from gitops.server.auth.settings import AuthSettings
    from tests.conftest import FakeIdentityProvider


def _api_router() -> APIRouter:
    router = APIRouter(prefix="/v1")

    @router.get("/featureflags")
    async def feature_flags() -> dict[str, dict[str, str]]:
        return {"flags": {"OIDC_AUTH": "true"}}

    @router.get("/whoami")
    def whoami(principal: CurrentPrincipal) -> dict[str, Any]:
        return {"id": principal.id, "groups": list(principal.groups)}

    return router


@pytest.fixture()
def client(
    oidc_settings: AuthSettings,
    idp_http_client: httpx.AsyncClient,
    secret_reader: StaticSecretReader,
) -> Iterator[TestClient]:
    app = create_app(
        auth_settings=oidc_settings,
        http_client=idp_http_client,
        secret_reader=secret_reader,
        extra_routers=[_api_router()],
    )
    with TestClient(app) as test_client:
        yield test_client


@pytest.mark.integration
class TestProtectedAPI:
    def test_unauthenticated_request_rejected(self, client: TestClient) -> None:
        response = client.get("/")

        assert response.status_code == 401
        assert response.json()["detail"] == "Authentication required"
        assert "X-Request-ID" in response.headers

    def test_public_route_served_without_credentials(self, client: TestClient) -> None:
        response = client.get("/v1/featureflags")

        assert response.status_code == 200
        assert response.json() == {"flags": {"OIDC_AUTH": "true"}}

    def test_protected_route_rejected_without_credentials(self, client: TestClient) -> None:
        assert client.get("/v1/whoami").status_code == 401


@pytest.mark.integration
class TestAdminLoginScenario:
    def test_sign_in_then_use_api(self, client: TestClient) -> None:
        sign_in = client.post("/oauth2/sign_in", json={"password": ADMIN_PASSWORD})
        assert sign_in.status_code == 200

        userinfo = client.get("/oauth2/userinfo")
        assert userinfo.json() == {"email": "admin", "groups": []}

        whoami = client.get("/v1/whoami")
        assert whoami.status_code == 200
        assert whoami.json() == {"id": "admin", "groups": []}

        client.post("/oauth2/logout")
        assert client.get("/v1/whoami").status_code == 401


@pytest.mark.integration
class TestOIDCLoginScenario:
    def test_full_browser_flow(self, client: TestClient, fake_idp: FakeIdentityProvider) -> None:
        start = client.get(
            "/oauth2", params={"return_url": "/applications"}, follow_redirects=False
        )
        assert start.status_code == 303
        state = parse_qs(urlsplit(start.headers["location"]).query)["state"][0]

        callback = client.get(
            "/oauth2/callback",
            params={"code": "auth-code", "state": state},
            follow_redirects=False,
        )
        assert callback.status_code == 303
        assert callback.headers["location"] == "/applications"

        whoami = client.get("/v1/whoami")
        assert whoami.status_code == 200
        assert whoami.json() == {"id": "jane@example.com", "groups": ["dev", "ops"]}

        userinfo = client.get("/oauth2/userinfo")
        assert userinfo.json() == {"email": "jane@example.com", "groups": ["dev"]}

    def test_bearer_id_token(self, client: TestClient, fake_idp: FakeIdentityProvider) -> None:
        token = fake_idp.issue_id_token(email="ci-bot@example.com", groups=["ci"])

        response = client.get("/v1/whoami", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.json() == {"id": "ci-bot@example.com", "groups": ["ci"]}

    def test_expired_bearer_token_rejected(
        self, client: TestClient, fake_idp: FakeIdentityProvider
    ) -> None:
        token = fake_idp.issue_id_token(iat=1_000_000_000, exp=1_000_000_600)

        response = client.get("/v1/whoami", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["error_code"] == "AUTHENTICATION_REQUIRED"

    def test_bearer_with_non_string_kid_rejected(self, client: TestClient) -> None:
        token = unsigned_token({"alg": "RS256", "kid": 123})

        response = client.get("/v1/whoami", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["error_code"] == "AUTHENTICATION_REQUIRED"
