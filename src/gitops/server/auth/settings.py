"""Control-plane authentication settings.

Loaded from environment variables with AUTH_ prefix.

Environment Variables:
    AUTH_OIDC_ISSUER_URL: OIDC issuer URL (empty disables the OIDC flow)
    AUTH_OIDC_CLIENT_ID: Client id registered with the identity provider
    AUTH_OIDC_CLIENT_SECRET: Client secret (hidden from repr)
    AUTH_OIDC_REDIRECT_URL: Callback URL registered with the identity provider
    AUTH_TOKEN_DURATION: Lifetime of issued cookies and local tokens
    AUTH_ROUTE_PREFIX: Mount point of the auth routes
    AUTH_PUBLIC_ROUTES: Comma-separated exact paths served without a principal
    AUTH_ADMIN_SECRET_NAMESPACE / _NAME / _KEY: Location of the admin password hash
    AUTH_COOKIE_SECURE: Mark auth cookies Secure
    AUTH_CLOCK_SKEW_LEEWAY: Seconds of tolerance on OIDC token time claims
"""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from gitops.infra.fastapi.settings import parse_comma_separated


class AuthSettings(BaseSettings):
    """Authentication configuration loaded from environment variables.

    Example:
        >>> settings = AuthSettings()
        >>> settings.is_oidc_configured()
        False
        >>> settings.route_prefix
        '/oauth2'
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # OIDC relying party
    oidc_issuer_url: str = Field(
        default="",
        description="OIDC issuer URL; empty means no identity provider is configured",
    )
    oidc_client_id: str = Field(default="", description="OIDC client id")
    oidc_client_secret: str = Field(
        default="",
        repr=False,  # never log client secret
        description="OIDC client secret",
    )
    oidc_redirect_url: str = Field(
        default="",
        description="Callback URL registered with the identity provider",
    )

    token_duration: timedelta = Field(
        default=timedelta(hours=1),
        description="Lifetime of id/refresh cookies and locally signed tokens",
    )
    route_prefix: str = Field(default="/oauth2", description="Mount point of the auth routes")
    public_routes: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Exact request paths forwarded without resolving a principal",
    )

    # Admin password hash location
    admin_secret_namespace: str = Field(default="wego-system")
    admin_secret_name: str = Field(default="admin-password-hash")
    admin_secret_key: str = Field(default="password")

    cookie_secure: bool = Field(default=False, description="Mark auth cookies Secure")
    clock_skew_leeway: int = Field(
        default=30,
        ge=0,
        le=300,
        description="Tolerance in seconds on OIDC exp/iat/nbf checks",
    )

    @field_validator("public_routes", mode="before")
    @classmethod
    def _parse_public_routes(cls, v: Any) -> Any:
        return parse_comma_separated(v)

    @field_validator("route_prefix")
    @classmethod
    def _normalize_route_prefix(cls, v: str) -> str:
        v = "/" + v.strip("/")
        if v == "/":
            raise ValueError("AUTH_ROUTE_PREFIX must not be the root path")
        return v

    @field_validator("token_duration")
    @classmethod
    def _positive_duration(cls, v: timedelta) -> timedelta:
        if v <= timedelta(0):
            raise ValueError("AUTH_TOKEN_DURATION must be positive")
        return v

    def is_oidc_configured(self) -> bool:
        """True when an identity provider issuer URL is set."""
        return bool(self.oidc_issuer_url)

    def validate_oidc_config(self) -> None:
        """Validate OIDC configuration completeness.

        No-op when no issuer is configured.

        Raises:
            ValueError: If OIDC configuration is incomplete or invalid.
        """
        if not self.is_oidc_configured():
            return

        if not self.oidc_client_id:
            raise ValueError("AUTH_OIDC_CLIENT_ID is required when an issuer is configured")

        if not self.oidc_redirect_url:
            raise ValueError("AUTH_OIDC_REDIRECT_URL is required when an issuer is configured")

        if not self.oidc_redirect_url.startswith(("http://", "https://")):
            raise ValueError("AUTH_OIDC_REDIRECT_URL must be a valid HTTP(S) URL")


@lru_cache(maxsize=1)
def get_auth_settings() -> AuthSettings:
    """Get singleton AuthSettings instance.

    Clear cache with ``get_auth_settings.cache_clear()`` for testing.
    """
    return AuthSettings()
