"""Git provider OAuth for the operator CLI.

PKCE code verifiers, GitHub/GitLab authorize and token URLs, token exchange,
and signed envelopes for provider tokens.
"""

from gitops.services.auth.client import (
    GitProviderAuthClient,
    ProviderToken,
    ProviderTokenExchangeError,
)
from gitops.services.auth.jwt import JWTClient, ProviderTokenClaims
from gitops.services.auth.pkce import (
    MAX_VERIFIER_LENGTH,
    MIN_VERIFIER_LENGTH,
    CodeVerifier,
    InvalidRangeError,
    derive_code_challenge,
)
from gitops.services.auth.providers import (
    PROVIDER_ENDPOINTS,
    GitProviderName,
    GitProviderOAuth,
    ProviderEndpoints,
    URLParseError,
)
from gitops.services.auth.settings import GitProviderSettings, get_git_provider_settings

__all__ = [
    "MAX_VERIFIER_LENGTH",
    "MIN_VERIFIER_LENGTH",
    "PROVIDER_ENDPOINTS",
    "CodeVerifier",
    "GitProviderAuthClient",
    "GitProviderName",
    "GitProviderOAuth",
    "GitProviderSettings",
    "InvalidRangeError",
    "JWTClient",
    "ProviderEndpoints",
    "ProviderToken",
    "ProviderTokenClaims",
    "ProviderTokenExchangeError",
    "URLParseError",
    "derive_code_challenge",
    "get_git_provider_settings",
]
