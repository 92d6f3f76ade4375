"""Signed envelopes for Git provider tokens.

Wraps a provider access token and its provider name in an HS256 JWT so the
CLI and the server can pass it around without it being altered in transit.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import jwt as pyjwt

from gitops.server.auth.tokens import InvalidSignatureError, MalformedTokenError, TokenExpiredError
from gitops.services.auth.providers import GitProviderName

if TYPE_CHECKING:
    from collections.abc import Callable

_ALGORITHM = "HS256"


@dataclass(frozen=True, slots=True)
class ProviderTokenClaims:
    """Verified contents of a provider-token JWT."""

    provider: GitProviderName
    provider_token: str
    expires_at: datetime


def _utcnow() -> datetime:
    return datetime.now(UTC)


class JWTClient:
    """Generate and verify provider-token JWTs with a shared secret key.

    Example:
        >>> client = JWTClient("a-long-shared-secret-key-of-at-least-32-bytes")
        >>> token = client.generate_jwt(timedelta(minutes=5), GitProviderName.GITHUB, "gho_x")
        >>> client.verify_jwt(token).provider_token
        'gho_x'
    """

    def __init__(
        self,
        secret_key: str | bytes,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not secret_key:
            raise ValueError("secret key must not be empty")
        self._key = secret_key.encode("utf-8") if isinstance(secret_key, str) else secret_key
        self._clock = clock

    def generate_jwt(
        self,
        expires_in: timedelta,
        provider: GitProviderName | str,
        provider_token: str,
    ) -> str:
        now = self._clock()
        claims: dict[str, Any] = {
            "provider": GitProviderName(provider).value,
            "provider_token": provider_token,
            "iat": int(now.timestamp()),
            "exp": int((now + expires_in).timestamp()),
        }
        return pyjwt.encode(claims, self._key, algorithm=_ALGORITHM)

    def verify_jwt(self, token: str) -> ProviderTokenClaims:
        """Verify signature and expiry and return the wrapped provider token.

        Raises:
            InvalidSignatureError: If the signature does not match.
            TokenExpiredError: If the token has expired.
            MalformedTokenError: If the token or its claims are malformed.
        """
        try:
            claims = pyjwt.decode(
                token,
                self._key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False, "require": ["exp", "provider", "provider_token"]},
            )
        except pyjwt.InvalidSignatureError as exc:
            raise InvalidSignatureError("token signature verification failed") from exc
        except pyjwt.InvalidTokenError as exc:
            raise MalformedTokenError("token is malformed") from exc

        try:
            provider = GitProviderName(claims["provider"])
            expires_at = datetime.fromtimestamp(int(claims["exp"]), tz=UTC)
        except (TypeError, ValueError, OverflowError) as exc:
            raise MalformedTokenError("token claims are malformed") from exc

        if self._clock() > expires_at:
            raise TokenExpiredError("token has expired")

        return ProviderTokenClaims(
            provider=provider,
            provider_token=str(claims["provider_token"]),
            expires_at=expires_at,
        )
