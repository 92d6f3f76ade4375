"""Control-plane API authentication.

OIDC relying party, local admin login with HMAC-signed tokens, principal
resolution from cookies and bearer headers, and the middleware that gates
the API behind them.
"""

from gitops.server.auth.dependencies import CurrentPrincipal, get_current_principal
from gitops.server.auth.middleware import APIAuthMiddleware, is_public_route
from gitops.server.auth.oidc import (
    IDTokenVerificationError,
    IDTokenVerifier,
    OIDCDiscoveryError,
    OIDCProvider,
    TokenExchangeError,
    TokenResponse,
    UserInfoError,
)
from gitops.server.auth.resolvers import (
    ID_TOKEN_COOKIE_NAME,
    AdminCookiePrincipalResolver,
    AuthorizationHeaderPrincipalResolver,
    CompositePrincipalResolver,
    IDTokenCookiePrincipalResolver,
    NoPrincipalError,
    PrincipalResolver,
)
from gitops.server.auth.secrets import (
    AdminPasswordReader,
    KubernetesSecretReader,
    SecretNotFoundError,
    StaticSecretReader,
)
from gitops.server.auth.server import (
    REFRESH_TOKEN_COOKIE_NAME,
    STATE_COOKIE_NAME,
    AuthServer,
    auth_route_paths,
    build_auth_router,
)
from gitops.server.auth.settings import AuthSettings, get_auth_settings
from gitops.server.auth.state import MalformedStateError, SessionState, generate_nonce
from gitops.server.auth.tokens import (
    ADMIN_SUBJECT,
    AdminClaims,
    HMACTokenSignerVerifier,
    InvalidSignatureError,
    MalformedTokenError,
    TokenExpiredError,
    TokenVerificationError,
)

__all__ = [
    "ADMIN_SUBJECT",
    "ID_TOKEN_COOKIE_NAME",
    "REFRESH_TOKEN_COOKIE_NAME",
    "STATE_COOKIE_NAME",
    "APIAuthMiddleware",
    "AdminClaims",
    "AdminCookiePrincipalResolver",
    "AdminPasswordReader",
    "AuthServer",
    "AuthSettings",
    "AuthorizationHeaderPrincipalResolver",
    "CompositePrincipalResolver",
    "CurrentPrincipal",
    "HMACTokenSignerVerifier",
    "IDTokenCookiePrincipalResolver",
    "IDTokenVerificationError",
    "IDTokenVerifier",
    "InvalidSignatureError",
    "KubernetesSecretReader",
    "MalformedStateError",
    "MalformedTokenError",
    "NoPrincipalError",
    "OIDCDiscoveryError",
    "OIDCProvider",
    "PrincipalResolver",
    "SecretNotFoundError",
    "SessionState",
    "StaticSecretReader",
    "TokenExchangeError",
    "TokenExpiredError",
    "TokenResponse",
    "TokenVerificationError",
    "UserInfoError",
    "auth_route_paths",
    "build_auth_router",
    "generate_nonce",
    "get_auth_settings",
    "get_current_principal",
    "is_public_route",
]
