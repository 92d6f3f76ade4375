"""Shared fixtures: a fake OIDC identity provider and auth settings."""

from __future__ import annotations

import base64
import json
import time
from typing import Any
from urllib.parse import parse_qs

import bcrypt
import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from gitops.infra.fastapi.settings import get_app_settings
from gitops.infra.observability.logging import get_logging_settings
from gitops.server.auth.secrets import StaticSecretReader
from gitops.server.auth.settings import AuthSettings, get_auth_settings
from gitops.services.auth.settings import get_git_provider_settings

ISSUER = "https://idp.example.com"
CLIENT_ID = "weave-gitops"
CLIENT_SECRET = "idp-client-secret"
REDIRECT_URL = "http://localhost:9001/oauth2/callback"
ADMIN_PASSWORD = "correct horse battery staple"


def unsigned_token(header: dict[str, Any], claims: dict[str, Any] | None = None) -> str:
    """Compact JWS with arbitrary header values and a junk signature."""

    def segment(value: dict[str, Any]) -> str:
        raw = json.dumps(value).encode()
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()

    payload = segment(claims or {"sub": "x"})
    return f"{segment(header)}.{payload}.c2ln"


class FakeIdentityProvider:
    """In-memory OpenID provider served through ``httpx.MockTransport``.

    Records every request so tests can assert on upstream calls.
    """

    def __init__(self) -> None:
        self.private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        self.kid = "signing-key-1"
        self.calls: list[httpx.Request] = []
        self.token_status = 200
        self.include_id_token = True
        self.include_refresh_token = True
        self.id_token_overrides: dict[str, Any] = {}
        self.raw_id_token: str | None = None
        self.token_overrides: dict[str, Any] = {}
        self.userinfo_status = 200
        self.userinfo_body: dict[str, Any] = {"email": "jane@example.com", "groups": ["dev"]}

    @property
    def paths(self) -> list[str]:
        return [request.url.path for request in self.calls]

    def discovery_document(self) -> dict[str, Any]:
        return {
            "issuer": ISSUER,
            "authorization_endpoint": f"{ISSUER}/authorize",
            "token_endpoint": f"{ISSUER}/token",
            "userinfo_endpoint": f"{ISSUER}/userinfo",
            "jwks_uri": f"{ISSUER}/keys",
        }

    def jwks(self) -> dict[str, Any]:
        jwk = json.loads(RSAAlgorithm.to_jwk(self.private_key.public_key()))
        jwk.update({"kid": self.kid, "use": "sig", "alg": "RS256"})
        return {"keys": [jwk]}

    def issue_id_token(
        self, *, private_key: Any = None, kid: str | None = None, **claims: Any
    ) -> str:
        now = int(time.time())
        payload: dict[str, Any] = {
            "iss": ISSUER,
            "aud": CLIENT_ID,
            "sub": "user-1234",
            "email": "jane@example.com",
            "groups": ["dev", "ops"],
            "iat": now,
            "exp": now + 300,
        }
        payload.update(claims)
        return jwt.encode(
            payload,
            private_key or self.private_key,
            algorithm="RS256",
            headers={"kid": kid or self.kid},
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        path = request.url.path

        if path == "/.well-known/openid-configuration":
            return httpx.Response(200, json=self.discovery_document())

        if path == "/keys":
            return httpx.Response(200, json=self.jwks())

        if path == "/token":
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_grant"})
            form = parse_qs(request.content.decode())
            body: dict[str, Any] = {
                "access_token": "idp-access-token",
                "token_type": "Bearer",
                "expires_in": 300,
                "received_code": form.get("code", [""])[0],
            }
            if self.include_id_token:
                body["id_token"] = self.raw_id_token or self.issue_id_token(
                    **self.id_token_overrides
                )
            if self.include_refresh_token:
                body["refresh_token"] = "idp-refresh-token"
            body.update(self.token_overrides)
            return httpx.Response(200, json=body)

        if path == "/userinfo":
            if not request.headers.get("Authorization", "").startswith("Bearer "):
                return httpx.Response(401)
            if self.userinfo_status != 200:
                return httpx.Response(self.userinfo_status)
            return httpx.Response(200, json=self.userinfo_body)

        return httpx.Response(404)


@pytest.fixture(autouse=True)
def _clear_settings_caches() -> None:
    """Cached settings must not leak between tests."""
    get_auth_settings.cache_clear()
    get_app_settings.cache_clear()
    get_logging_settings.cache_clear()
    get_git_provider_settings.cache_clear()


@pytest.fixture()
def fake_idp() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture()
def idp_http_client(fake_idp: FakeIdentityProvider) -> httpx.AsyncClient:
    """AsyncClient whose transport is the fake identity provider."""
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_idp.handler))


@pytest.fixture()
def oidc_settings() -> AuthSettings:
    return AuthSettings(
        oidc_issuer_url=ISSUER,
        oidc_client_id=CLIENT_ID,
        oidc_client_secret=CLIENT_SECRET,
        oidc_redirect_url=REDIRECT_URL,
        public_routes=["/v1/featureflags"],
    )


@pytest.fixture()
def local_settings() -> AuthSettings:
    """Settings with no identity provider configured."""
    return AuthSettings(oidc_issuer_url="", public_routes=["/v1/featureflags"])


@pytest.fixture(scope="session")
def admin_password_hash() -> bytes:
    # Low cost factor keeps the suite fast
    return bcrypt.hashpw(ADMIN_PASSWORD.encode(), bcrypt.gensalt(rounds=4))


@pytest.fixture()
def secret_reader(admin_password_hash: bytes) -> StaticSecretReader:
    return StaticSecretReader(admin_password_hash)
