"""Git provider OAuth application settings.

Loaded from environment variables with GIT_PROVIDER_ prefix.

Environment Variables:
    GIT_PROVIDER_GITHUB_CLIENT_ID / GIT_PROVIDER_GITHUB_CLIENT_SECRET
    GIT_PROVIDER_GITLAB_CLIENT_ID / GIT_PROVIDER_GITLAB_CLIENT_SECRET
    GIT_PROVIDER_HTTP_TIMEOUT: Seconds before provider HTTP calls give up
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class GitProviderSettings(BaseSettings):
    """OAuth client credentials for the supported Git hosting providers.

    Example:
        >>> GitProviderSettings(github_client_id="abc").github_client_id
        'abc'
    """

    model_config = SettingsConfigDict(
        env_prefix="GIT_PROVIDER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    github_client_id: str = Field(default="")
    github_client_secret: str = Field(default="", repr=False)
    gitlab_client_id: str = Field(default="")
    gitlab_client_secret: str = Field(default="", repr=False)
    http_timeout: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Transport timeout in seconds for provider calls",
    )


@lru_cache(maxsize=1)
def get_git_provider_settings() -> GitProviderSettings:
    """Get singleton GitProviderSettings instance.

    Clear cache with ``get_git_provider_settings.cache_clear()`` for testing.
    """
    return GitProviderSettings()
