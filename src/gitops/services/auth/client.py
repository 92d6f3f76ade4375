"""Git provider token exchange and validation.

Exchanges a PKCE authorization code for a provider access token and checks
whether a stored token is still accepted by the provider. Calls are not
retried; the operator restarts the login flow on failure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from gitops.foundation.exceptions import UpstreamError
from gitops.services.auth.providers import GitProviderOAuth
from gitops.services.auth.settings import get_git_provider_settings

if TYPE_CHECKING:
    from types import TracebackType

    from gitops.services.auth.pkce import CodeVerifier
    from gitops.services.auth.providers import GitProviderName
    from gitops.services.auth.settings import GitProviderSettings

logger = logging.getLogger(__name__)


class ProviderTokenExchangeError(UpstreamError):
    """Raised when a Git provider refuses or fails the code exchange.

    Attributes:
        status_code: HTTP status from the provider (0 on transport failure).
        error: OAuth 2.0 error code reported by the provider.
    """

    error_code = "PROVIDER_TOKEN_EXCHANGE_FAILED"

    def __init__(self, status_code: int, error: str, error_description: str = "") -> None:
        self.status_code = status_code
        self.error = error
        self.error_description = error_description
        super().__init__(
            f"Provider token exchange failed: {error} ({status_code})",
            context={"status_code": status_code, "error": error},
        )


@dataclass(frozen=True, slots=True)
class ProviderToken:
    """Access token issued by a Git provider.

    Attributes:
        access_token: Token used against the provider's API.
        token_type: Usually "bearer".
        scope: Granted scopes as reported by the provider.
        refresh_token: Present for providers that rotate tokens (GitLab).
        expires_in: Token TTL in seconds, if advertised.
    """

    access_token: str
    token_type: str
    scope: str
    refresh_token: str | None = None
    expires_in: int | None = None


class GitProviderAuthClient:
    """Async client for one Git provider's OAuth token endpoints.

    Args:
        oauth: URL builder for the provider and OAuth application.
        http_client: Shared client; the caller owns its lifecycle.

    Use :meth:`from_settings` as an async context manager when the client
    should own its transport:

        async with GitProviderAuthClient.from_settings("github") as client:
            token = await client.exchange_code(redirect_url, code, verifier)
    """

    def __init__(self, oauth: GitProviderOAuth, http_client: httpx.AsyncClient) -> None:
        self._oauth = oauth
        self._http = http_client
        self._owns_http = False

    @classmethod
    def from_settings(
        cls,
        provider: GitProviderName | str,
        settings: GitProviderSettings | None = None,
    ) -> GitProviderAuthClient:
        """Build a client with its own transport, timed out per ``http_timeout``."""
        settings = settings or get_git_provider_settings()
        client = cls(
            GitProviderOAuth.from_settings(provider, settings),
            httpx.AsyncClient(timeout=settings.http_timeout),
        )
        client._owns_http = True
        return client

    @property
    def http_client(self) -> httpx.AsyncClient:
        return self._http

    async def aclose(self) -> None:
        """Close the transport if this client created it."""
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> GitProviderAuthClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def exchange_code(
        self,
        redirect_url: str,
        code: str,
        code_verifier: CodeVerifier,
    ) -> ProviderToken:
        """Exchange an authorization code using the PKCE verifier.

        Raises:
            URLParseError: If ``redirect_url`` is malformed.
            ProviderTokenExchangeError: On transport failure, a non-2xx status,
                or an OAuth error body (GitHub answers errors with 200).
        """
        url = self._oauth.token_url(redirect_url, code, code_verifier)
        try:
            response = await self._http.post(url, headers={"Accept": "application/json"})
        except httpx.HTTPError as exc:
            raise ProviderTokenExchangeError(status_code=0, error="transport_error") from exc

        body = self._json_body(response)
        if response.is_error or "error" in body or not body.get("access_token"):
            logger.info(
                "provider_token_exchange_failed",
                extra={"provider": self._oauth.provider.value, "status": response.status_code},
            )
            raise ProviderTokenExchangeError(
                status_code=response.status_code,
                error=str(body.get("error", "invalid_token_response")),
                error_description=str(body.get("error_description", "")),
            )

        try:
            raw_expires_in = body.get("expires_in")
            expires_in = int(raw_expires_in) if raw_expires_in is not None else None
        except (TypeError, ValueError) as exc:
            raise ProviderTokenExchangeError(
                status_code=response.status_code, error="invalid_token_response"
            ) from exc

        return ProviderToken(
            access_token=str(body["access_token"]),
            token_type=str(body.get("token_type", "bearer")),
            scope=str(body.get("scope", "")),
            refresh_token=str(body["refresh_token"]) if body.get("refresh_token") else None,
            expires_in=expires_in,
        )

    async def validate_token(self, access_token: str) -> bool:
        """Return whether the provider still accepts ``access_token``.

        Raises:
            UpstreamError: If the provider cannot be reached or answers with an
                unexpected status.
        """
        try:
            response = await self._http.get(
                self._oauth.endpoints.user_url,
                headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise UpstreamError(
                "provider token validation failed",
                context={"provider": self._oauth.provider.value},
            ) from exc

        if response.status_code == 401:
            return False
        if response.is_error:
            raise UpstreamError(
                "provider token validation failed",
                context={"provider": self._oauth.provider.value, "status": response.status_code},
            )
        return True

    @staticmethod
    def _json_body(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
