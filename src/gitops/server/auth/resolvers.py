"""Principal resolvers: extract a caller identity from one credential shape.

Each resolver either returns a fully verified :class:`UserPrincipal` or
raises; none ever returns a partially populated principal. The composite
tries its resolvers in order and collapses every failure into one
``NoPrincipalError`` so callers cannot tell which credential was rejected.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from gitops.foundation.exceptions import AuthenticationError, DomainError
from gitops.foundation.principal import UserPrincipal

if TYPE_CHECKING:
    from collections.abc import Sequence

    from starlette.requests import Request

    from gitops.server.auth.oidc import IDTokenVerifier
    from gitops.server.auth.tokens import HMACTokenSignerVerifier

logger = logging.getLogger(__name__)

ID_TOKEN_COOKIE_NAME = "id_token"


class CredentialNotFoundError(AuthenticationError):
    """Raised when the credential a resolver looks for is absent."""

    error_code = "MISSING_CREDENTIAL"

    def __init__(self, message: str) -> None:
        super().__init__(message, auth_error="invalid_request")


class NoPrincipalError(AuthenticationError):
    """Raised when no resolver could produce a principal."""

    error_code = "AUTHENTICATION_REQUIRED"


class PrincipalResolver(Protocol):
    """Capability: given a request, produce a verified principal or raise."""

    async def resolve(self, request: Request) -> UserPrincipal: ...


def principal_from_claims(claims: dict[str, Any]) -> UserPrincipal:
    """Map verified OIDC claims to a principal.

    The id is the ``email`` claim, falling back to ``sub``. ``groups`` may be
    absent, a list, or a single string.

    Raises:
        AuthenticationError: If neither email nor sub is present.
    """
    subject = claims.get("email") or claims.get("sub")
    if not subject:
        raise AuthenticationError(
            "token carries neither email nor sub claim",
            error_code="INVALID_CLAIMS",
        )

    groups = claims.get("groups") or []
    if isinstance(groups, str):
        groups = [groups]

    return UserPrincipal(id=str(subject), groups=tuple(str(g) for g in groups))


class AdminCookiePrincipalResolver:
    """Resolve the local admin from a locally signed ``id_token`` cookie."""

    def __init__(
        self,
        signer: HMACTokenSignerVerifier,
        cookie_name: str = ID_TOKEN_COOKIE_NAME,
    ) -> None:
        self._signer = signer
        self._cookie_name = cookie_name

    async def resolve(self, request: Request) -> UserPrincipal:
        token = request.cookies.get(self._cookie_name)
        if not token:
            raise CredentialNotFoundError(f"cookie {self._cookie_name!r} not present")
        claims = self._signer.verify(token)
        return UserPrincipal(id=claims.subject)


class AuthorizationHeaderPrincipalResolver:
    """Resolve an OIDC user from an ``Authorization: Bearer <id token>`` header."""

    def __init__(self, verifier: IDTokenVerifier) -> None:
        self._verifier = verifier

    async def resolve(self, request: Request) -> UserPrincipal:
        header = request.headers.get("Authorization", "")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise CredentialNotFoundError("no bearer token in Authorization header")
        claims = await self._verifier.verify(token.strip())
        return principal_from_claims(claims)


class IDTokenCookiePrincipalResolver:
    """Resolve an OIDC user from the ``id_token`` cookie."""

    def __init__(self, verifier: IDTokenVerifier, cookie_name: str = ID_TOKEN_COOKIE_NAME) -> None:
        self._verifier = verifier
        self._cookie_name = cookie_name

    async def resolve(self, request: Request) -> UserPrincipal:
        token = request.cookies.get(self._cookie_name)
        if not token:
            raise CredentialNotFoundError(f"cookie {self._cookie_name!r} not present")
        claims = await self._verifier.verify(token)
        return principal_from_claims(claims)


class CompositePrincipalResolver:
    """First-success dispatch over an ordered sequence of resolvers.

    Example:
        >>> composite = CompositePrincipalResolver([admin_resolver, header_resolver])
        >>> principal = await composite.resolve(request)
    """

    def __init__(self, resolvers: Sequence[PrincipalResolver]) -> None:
        self._resolvers = tuple(resolvers)

    @property
    def resolvers(self) -> tuple[PrincipalResolver, ...]:
        return self._resolvers

    async def resolve(self, request: Request) -> UserPrincipal:
        for resolver in self._resolvers:
            try:
                return await resolver.resolve(request)
            except DomainError as exc:
                logger.info(
                    "principal_resolver_failed",
                    extra={
                        "resolver": type(resolver).__name__,
                        "error_code": exc.error_code,
                        "path": request.url.path,
                    },
                )
        raise NoPrincipalError("Authentication required")
