"""OpenID Connect relying-party client.

Discovers the identity provider's endpoints once at server construction,
builds authorization URLs, exchanges authorization codes, queries the
user-info endpoint, and verifies ID tokens against the provider's published
signing keys.

All network calls go through one shared ``httpx.AsyncClient``; its transport
timeouts bound every call. Nothing here retries.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import httpx
import jwt as pyjwt

from gitops.foundation.exceptions import (
    AuthenticationError,
    ConfigurationError,
    UpstreamError,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

SCOPE_OPENID = "openid"
SCOPE_OFFLINE_ACCESS = "offline_access"
SCOPE_PROFILE = "profile"
SCOPE_EMAIL = "email"
SCOPE_GROUPS = "groups"

# Always requested in addition to whatever the caller asks for
REQUIRED_SCOPES = (SCOPE_OPENID, SCOPE_OFFLINE_ACCESS, SCOPE_EMAIL, SCOPE_GROUPS)

_DISCOVERY_PATH = "/.well-known/openid-configuration"
_FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
_JWKS_CACHE_TTL = 3600.0
_ALGORITHMS = ["RS256", "ES256"]


class OIDCDiscoveryError(ConfigurationError):
    """Raised when the provider's discovery document is unusable."""

    error_code = "OIDC_DISCOVERY_FAILED"


class TokenExchangeError(UpstreamError):
    """Raised when the authorization-code exchange fails.

    Attributes:
        status_code: HTTP status from the identity provider (0 on transport failure).
        error: OAuth 2.0 error code (e.g., "invalid_grant").
    """

    error_code = "TOKEN_EXCHANGE_FAILED"

    def __init__(self, status_code: int, error: str, error_description: str = "") -> None:
        self.status_code = status_code
        self.error = error
        self.error_description = error_description
        super().__init__(
            f"Token exchange failed: {error} ({status_code})",
            context={"status_code": status_code, "error": error},
        )


class UserInfoError(UpstreamError):
    """Raised when the provider's user-info endpoint rejects a token or fails."""

    error_code = "USERINFO_FAILED"


class IDTokenVerificationError(AuthenticationError):
    """Raised when an ID token fails signature or claim verification."""

    error_code = "ID_TOKEN_INVALID"


def merge_scopes(scopes: Iterable[str]) -> list[str]:
    """Return ``scopes`` in order with the required OIDC scopes appended once."""
    merged: list[str] = []
    for scope in (*scopes, *REQUIRED_SCOPES):
        if scope not in merged:
            merged.append(scope)
    return merged


@dataclass(frozen=True, slots=True)
class TokenResponse:
    """Parsed response from the provider's token endpoint.

    Attributes:
        access_token: Access token for the user-info endpoint.
        id_token: Raw OIDC ID token, if the provider returned one.
        refresh_token: Refresh token, if the provider returned one.
        expires_in: Access token TTL in seconds, if advertised.
        token_type: Usually "Bearer".
    """

    access_token: str
    id_token: str | None
    refresh_token: str | None
    expires_in: int | None
    token_type: str


class OIDCProvider:
    """Endpoints and HTTP operations of one discovered OpenID provider.

    Use :meth:`discover` rather than the constructor.
    """

    def __init__(
        self,
        *,
        issuer: str,
        authorization_endpoint: str,
        token_endpoint: str,
        jwks_uri: str,
        userinfo_endpoint: str | None,
        http_client: httpx.AsyncClient,
    ) -> None:
        self.issuer = issuer
        self.authorization_endpoint = authorization_endpoint
        self.token_endpoint = token_endpoint
        self.jwks_uri = jwks_uri
        self.userinfo_endpoint = userinfo_endpoint
        self._http = http_client
        self._jwks = _JWKSCache(jwks_uri, http_client)

    @classmethod
    async def discover(cls, issuer_url: str, http_client: httpx.AsyncClient) -> OIDCProvider:
        """Fetch and validate ``{issuer}/.well-known/openid-configuration``.

        Raises:
            OIDCDiscoveryError: If the document cannot be fetched, the advertised
                issuer differs from ``issuer_url``, or a required endpoint is missing.
        """
        issuer = issuer_url.rstrip("/")
        discovery_url = f"{issuer}{_DISCOVERY_PATH}"
        try:
            response = await http_client.get(discovery_url)
            response.raise_for_status()
            doc: dict[str, Any] = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise OIDCDiscoveryError(
                "could not fetch OIDC discovery document",
                context={"url": discovery_url},
            ) from exc

        discovered_issuer = str(doc.get("issuer", "")).rstrip("/")
        if discovered_issuer != issuer:
            raise OIDCDiscoveryError(
                "issuer in discovery document does not match configured issuer",
                context={"expected": issuer, "discovered": discovered_issuer},
            )

        missing = [
            key
            for key in ("authorization_endpoint", "token_endpoint", "jwks_uri")
            if not doc.get(key)
        ]
        if missing:
            raise OIDCDiscoveryError(
                "discovery document is missing required endpoints",
                context={"missing": missing},
            )

        logger.info("oidc_discovery_success", extra={"issuer": issuer})
        userinfo = doc.get("userinfo_endpoint")
        return cls(
            issuer=str(doc["issuer"]),
            authorization_endpoint=str(doc["authorization_endpoint"]),
            token_endpoint=str(doc["token_endpoint"]),
            jwks_uri=str(doc["jwks_uri"]),
            userinfo_endpoint=str(userinfo) if userinfo else None,
            http_client=http_client,
        )

    def authorization_url(
        self,
        client_id: str,
        redirect_uri: str,
        scopes: Iterable[str],
        state: str,
    ) -> str:
        """Build the authorize URL for the authorization-code flow."""
        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes),
            "state": state,
        }
        separator = "&" if "?" in self.authorization_endpoint else "?"
        return f"{self.authorization_endpoint}{separator}{urlencode(sorted(params.items()))}"

    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        client_id: str,
        client_secret: str,
    ) -> TokenResponse:
        """Exchange an authorization code for tokens.

        Raises:
            TokenExchangeError: On transport failure, a non-2xx status, or an
                unparsable body.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": client_id,
            "client_secret": client_secret,
        }
        try:
            response = await self._http.post(
                self.token_endpoint,
                data=data,
                headers={"Content-Type": _FORM_CONTENT_TYPE, "Accept": "application/json"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            content_type = exc.response.headers.get("content-type", "")
            body: dict[str, Any] = {}
            if content_type.startswith("application/json"):
                try:
                    body = exc.response.json()
                except ValueError:
                    body = {}
            raise TokenExchangeError(
                status_code=exc.response.status_code,
                error=str(body.get("error", "unknown")),
                error_description=str(body.get("error_description", "")),
            ) from exc
        except httpx.HTTPError as exc:
            raise TokenExchangeError(status_code=0, error="transport_error") from exc

        try:
            body_json: dict[str, Any] = response.json()
            access_token = str(body_json["access_token"])
            raw_expires_in = body_json.get("expires_in")
            expires_in = int(raw_expires_in) if raw_expires_in is not None else None
        except (ValueError, KeyError, TypeError) as exc:
            raise TokenExchangeError(
                status_code=response.status_code, error="invalid_token_response"
            ) from exc

        return TokenResponse(
            access_token=access_token,
            id_token=str(body_json["id_token"]) if body_json.get("id_token") else None,
            refresh_token=(
                str(body_json["refresh_token"]) if body_json.get("refresh_token") else None
            ),
            expires_in=expires_in,
            token_type=str(body_json.get("token_type", "Bearer")),
        )

    async def user_info(self, access_token: str) -> dict[str, Any]:
        """Query the user-info endpoint with ``access_token`` as bearer.

        Raises:
            UserInfoError: If the provider has no user-info endpoint or the
                call fails.
        """
        if not self.userinfo_endpoint:
            raise UserInfoError("provider does not advertise a userinfo endpoint")
        try:
            response = await self._http.get(
                self.userinfo_endpoint,
                headers={"Authorization": f"Bearer {access_token}"},
            )
            response.raise_for_status()
            info = response.json()
        except httpx.HTTPStatusError as exc:
            raise UserInfoError(
                "userinfo request rejected",
                context={"status_code": exc.response.status_code},
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise UserInfoError("userinfo request failed") from exc

        if not isinstance(info, dict):
            raise UserInfoError("userinfo response is not a JSON object")
        return info

    def verifier(self, client_id: str, leeway: int = 30) -> IDTokenVerifier:
        """Return a verifier for ID tokens issued to ``client_id``."""
        return IDTokenVerifier(
            issuer=self.issuer,
            client_id=client_id,
            jwks=self._jwks,
            leeway=leeway,
        )


class _JWKSCache:
    """Provider signing keys, fetched lazily and refreshed on unknown kid."""

    def __init__(
        self,
        jwks_uri: str,
        http_client: httpx.AsyncClient,
        ttl: float = _JWKS_CACHE_TTL,
    ) -> None:
        self._jwks_uri = jwks_uri
        self._http = http_client
        self._ttl = ttl
        self._keys: pyjwt.PyJWKSet | None = None
        self._fetched_at = 0.0
        self._lock = asyncio.Lock()

    async def get_signing_key(self, kid: str | None) -> pyjwt.PyJWK:
        """Return the key for ``kid``, refreshing the set once on a miss.

        Raises:
            IDTokenVerificationError: If no matching key exists after refresh
                or the key set cannot be fetched.
        """
        keys = await self._get_keys(force=False)
        key = self._select(keys, kid)
        if key is None:
            logger.info("jwks_unknown_kid_refresh", extra={"kid": kid})
            keys = await self._get_keys(force=True)
            key = self._select(keys, kid)
        if key is None:
            raise IDTokenVerificationError(
                "no signing key matches token",
                error_code="UNKNOWN_SIGNING_KEY",
                context={"kid": kid},
            )
        return key

    @staticmethod
    def _select(keys: pyjwt.PyJWKSet, kid: str | None) -> pyjwt.PyJWK | None:
        if kid is None:
            return keys.keys[0] if len(keys.keys) == 1 else None
        for key in keys.keys:
            if key.key_id == kid:
                return key
        return None

    async def _get_keys(self, *, force: bool) -> pyjwt.PyJWKSet:
        async with self._lock:
            fresh = time.monotonic() - self._fetched_at < self._ttl
            if self._keys is not None and fresh and not force:
                return self._keys
            try:
                response = await self._http.get(self._jwks_uri)
                response.raise_for_status()
                self._keys = pyjwt.PyJWKSet.from_dict(response.json())
            except (httpx.HTTPError, ValueError, AttributeError, pyjwt.PyJWKSetError) as exc:
                raise IDTokenVerificationError(
                    "could not fetch provider signing keys",
                    error_code="JWKS_UNAVAILABLE",
                ) from exc
            self._fetched_at = time.monotonic()
            logger.debug("jwks_refreshed", extra={"key_count": len(self._keys.keys)})
            return self._keys


class IDTokenVerifier:
    """Verify OIDC ID tokens for one client.

    Checks signature against the provider's JWKS and the ``iss``, ``aud``,
    ``exp`` and ``iat`` claims, allowing ``leeway`` seconds of clock skew.
    """

    def __init__(self, *, issuer: str, client_id: str, jwks: _JWKSCache, leeway: int) -> None:
        self._issuer = issuer
        self._client_id = client_id
        self._jwks = jwks
        self._leeway = leeway

    async def verify(self, raw_token: str) -> dict[str, Any]:
        """Return verified claims of ``raw_token``.

        Raises:
            IDTokenVerificationError: On any verification failure.
        """
        try:
            header = pyjwt.get_unverified_header(raw_token)
        except pyjwt.InvalidTokenError as exc:
            raise IDTokenVerificationError(
                "token is malformed", error_code="MALFORMED_TOKEN"
            ) from exc

        signing_key = await self._jwks.get_signing_key(header.get("kid"))

        try:
            return pyjwt.decode(
                raw_token,
                signing_key.key,
                algorithms=_ALGORITHMS,
                issuer=self._issuer,
                audience=self._client_id,
                leeway=self._leeway,
                options={"require": ["exp", "iat", "iss", "aud", "sub"]},
            )
        except pyjwt.ExpiredSignatureError as exc:
            raise IDTokenVerificationError("token has expired", error_code="TOKEN_EXPIRED") from exc
        except pyjwt.InvalidIssuerError as exc:
            raise IDTokenVerificationError(
                "invalid issuer claim", error_code="INVALID_CLAIMS"
            ) from exc
        except pyjwt.InvalidAudienceError as exc:
            raise IDTokenVerificationError(
                "invalid audience claim", error_code="INVALID_CLAIMS"
            ) from exc
        except pyjwt.MissingRequiredClaimError as exc:
            raise IDTokenVerificationError(
                f"missing required claim: {exc.claim}", error_code="INVALID_CLAIMS"
            ) from exc
        except pyjwt.InvalidSignatureError as exc:
            raise IDTokenVerificationError(
                "token signature verification failed", error_code="INVALID_SIGNATURE"
            ) from exc
        except pyjwt.InvalidTokenError as exc:
            raise IDTokenVerificationError("token validation failed") from exc
