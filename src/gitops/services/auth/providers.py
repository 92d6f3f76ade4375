"""Authorize and token URLs for Git hosting provider OAuth apps with PKCE.

Pure URL construction: nothing in this module performs network I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING
from urllib.parse import urlencode, urlsplit, urlunsplit

if TYPE_CHECKING:
    from collections.abc import Iterable

    from gitops.services.auth.pkce import CodeVerifier
    from gitops.services.auth.settings import GitProviderSettings


class URLParseError(ValueError):
    """Raised when a redirect URL is not an absolute URL."""


class GitProviderName(StrEnum):
    GITHUB = "github"
    GITLAB = "gitlab"


@dataclass(frozen=True, slots=True)
class ProviderEndpoints:
    """Fixed OAuth endpoints of one Git hosting provider."""

    host: str
    authorize_path: str
    token_path: str
    user_url: str

    def url(self, path: str, params: dict[str, str]) -> str:
        return urlunsplit(("https", self.host, path, urlencode(params), ""))


PROVIDER_ENDPOINTS: dict[GitProviderName, ProviderEndpoints] = {
    GitProviderName.GITHUB: ProviderEndpoints(
        host="github.com",
        authorize_path="/login/oauth/authorize",
        token_path="/login/oauth/access_token",
        user_url="https://api.github.com/user",
    ),
    GitProviderName.GITLAB: ProviderEndpoints(
        host="gitlab.com",
        authorize_path="/oauth/authorize",
        token_path="/oauth/token",
        user_url="https://gitlab.com/api/v4/user",
    ),
}


def _validate_redirect_url(redirect_url: str) -> str:
    try:
        parts = urlsplit(redirect_url)
    except ValueError as exc:
        raise URLParseError(f"invalid redirect URL: {exc}") from exc
    if not parts.scheme or not parts.netloc:
        raise URLParseError("redirect URL must be absolute")
    return redirect_url


class GitProviderOAuth:
    """OAuth URL builder for one provider and OAuth application.

    Example:
        >>> oauth = GitProviderOAuth(GitProviderName.GITLAB, "client-id", "client-secret")
        >>> url = oauth.authorize_url("http://localhost:9999/cb", ["api"], CodeVerifier.new())
    """

    def __init__(
        self,
        provider: GitProviderName | str,
        client_id: str,
        client_secret: str,
    ) -> None:
        self.provider = GitProviderName(provider)
        self.endpoints = PROVIDER_ENDPOINTS[self.provider]
        self._client_id = client_id
        self._client_secret = client_secret

    @classmethod
    def from_settings(
        cls,
        provider: GitProviderName | str,
        settings: GitProviderSettings,
    ) -> GitProviderOAuth:
        provider = GitProviderName(provider)
        if provider is GitProviderName.GITHUB:
            return cls(provider, settings.github_client_id, settings.github_client_secret)
        return cls(provider, settings.gitlab_client_id, settings.gitlab_client_secret)

    @property
    def client_id(self) -> str:
        return self._client_id

    def authorize_url(
        self,
        redirect_url: str,
        scopes: Iterable[str],
        code_verifier: CodeVerifier,
    ) -> str:
        """Build the provider's authorization URL carrying the S256 challenge.

        Raises:
            URLParseError: If ``redirect_url`` is malformed.
        """
        params = {
            "client_id": self._client_id,
            "redirect_uri": _validate_redirect_url(redirect_url),
            "response_type": "code",
            "scope": " ".join(scopes),
            "code_challenge": code_verifier.code_challenge(),
            "code_challenge_method": "S256",
        }
        return self.endpoints.url(self.endpoints.authorize_path, params)

    def token_url(self, redirect_url: str, code: str, code_verifier: CodeVerifier) -> str:
        """Build the provider's token-exchange URL carrying the raw verifier.

        Raises:
            URLParseError: If ``redirect_url`` is malformed.
        """
        params = {
            "client_id": self._client_id,
            "redirect_uri": _validate_redirect_url(redirect_url),
            "grant_type": "authorization_code",
            "code_verifier": code_verifier.raw_value,
            "code": code,
            "client_secret": self._client_secret,
        }
        return self.endpoints.url(self.endpoints.token_path, params)
