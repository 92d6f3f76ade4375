"""HMAC-signed tokens for the local admin login path.

The signing secret is generated once per signer instance and lives only in
process memory. Restarting the server invalidates every token it issued.
Tokens are HS256 JWTs; PyJWT compares MACs with ``hmac.compare_digest``.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import jwt as pyjwt

from gitops.foundation.exceptions import AuthenticationError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

ADMIN_SUBJECT = "admin"
MIN_SECRET_BYTES = 64
_ALGORITHM = "HS256"


class TokenVerificationError(AuthenticationError):
    """Base class for local token verification failures."""

    error_code = "TOKEN_INVALID"


class InvalidSignatureError(TokenVerificationError):
    """Raised when a token's MAC does not match the signing secret."""

    error_code = "INVALID_SIGNATURE"


class TokenExpiredError(TokenVerificationError):
    """Raised when the current time is past the token's expiry."""

    error_code = "TOKEN_EXPIRED"


class MalformedTokenError(TokenVerificationError):
    """Raised when a value is not a decodable token with the required claims."""

    error_code = "MALFORMED_TOKEN"


@dataclass(frozen=True, slots=True)
class AdminClaims:
    """Verified claims of a locally signed token."""

    subject: str
    expires_at: datetime


def _utcnow() -> datetime:
    return datetime.now(UTC)


class HMACTokenSignerVerifier:
    """Issue and verify opaque, time-bounded tokens for the admin user.

    Args:
        lifetime: How long a signed token stays valid.
        secret: Signing secret. Generated from a CSPRNG when omitted.
        clock: Source of the current time.

    Raises:
        ValueError: If the lifetime is not positive or the secret is
            shorter than 64 bytes.

    Example:
        >>> signer = HMACTokenSignerVerifier(timedelta(hours=1))
        >>> signer.verify(signer.sign()).subject
        'admin'
    """

    def __init__(
        self,
        lifetime: timedelta,
        secret: bytes | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if lifetime <= timedelta(0):
            raise ValueError("token lifetime must be positive")
        if secret is None:
            secret = secrets.token_bytes(MIN_SECRET_BYTES)
        elif len(secret) < MIN_SECRET_BYTES:
            raise ValueError(f"signing secret must be at least {MIN_SECRET_BYTES} bytes")
        self._lifetime = lifetime
        self._secret = secret
        self._clock = clock

    @property
    def lifetime(self) -> timedelta:
        return self._lifetime

    def sign(self) -> str:
        """Return a token for the admin subject expiring ``lifetime`` from now."""
        now = self._clock()
        claims: dict[str, Any] = {
            "sub": ADMIN_SUBJECT,
            "iat": int(now.timestamp()),
            "exp": int((now + self._lifetime).timestamp()),
        }
        return pyjwt.encode(claims, self._secret, algorithm=_ALGORITHM)

    def verify(self, token: str) -> AdminClaims:
        """Verify a token's MAC and expiry.

        Raises:
            InvalidSignatureError: If the MAC does not match.
            TokenExpiredError: If the token has expired.
            MalformedTokenError: If the value cannot be decoded.
        """
        try:
            claims = pyjwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False, "require": ["exp", "sub"]},
            )
        except pyjwt.InvalidSignatureError as exc:
            raise InvalidSignatureError("token signature verification failed") from exc
        except pyjwt.InvalidTokenError as exc:
            raise MalformedTokenError("token is malformed") from exc

        try:
            expires_at = datetime.fromtimestamp(int(claims["exp"]), tz=UTC)
        except (TypeError, ValueError, OverflowError) as exc:
            raise MalformedTokenError("token expiry is not a timestamp") from exc

        if self._clock() > expires_at:
            raise TokenExpiredError("token has expired")

        return AdminClaims(subject=str(claims["sub"]), expires_at=expires_at)
