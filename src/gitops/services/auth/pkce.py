"""PKCE (Proof Key for Code Exchange) code verifiers, RFC 7636.

A verifier is a random string over the unreserved character set. Only its
S256 challenge goes into the authorize request; the raw verifier is sent
once, with the token exchange.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
import string

MIN_VERIFIER_LENGTH = 43
MAX_VERIFIER_LENGTH = 128

# RFC 7636 section 4.1: ALPHA / DIGIT / "-" / "." / "_" / "~"
UNRESERVED_CHARACTERS = string.ascii_letters + string.digits + "-._~"


class InvalidRangeError(ValueError):
    """Raised when verifier length bounds are inverted or outside [43, 128]."""


def derive_code_challenge(code_verifier: str) -> str:
    """Derive S256 code_challenge from code_verifier per RFC 7636.

    Computes ``BASE64URL(SHA256(code_verifier))`` with padding stripped.

    Example:
        >>> derive_code_challenge("dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk")
        'E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM'
    """
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class CodeVerifier:
    """A PKCE code verifier held in memory for one authorization attempt.

    Example:
        >>> verifier = CodeVerifier.new(43, 128)
        >>> 43 <= len(verifier.raw_value) <= 128
        True
    """

    __slots__ = ("_value",)

    def __init__(self, value: str) -> None:
        if not MIN_VERIFIER_LENGTH <= len(value) <= MAX_VERIFIER_LENGTH:
            raise InvalidRangeError(
                "code verifier length must be within "
                f"[{MIN_VERIFIER_LENGTH}, {MAX_VERIFIER_LENGTH}]"
            )
        if any(ch not in UNRESERVED_CHARACTERS for ch in value):
            raise ValueError("code verifier contains characters outside the unreserved set")
        self._value = value

    @classmethod
    def new(
        cls,
        min_length: int = MIN_VERIFIER_LENGTH,
        max_length: int = MAX_VERIFIER_LENGTH,
    ) -> CodeVerifier:
        """Generate a verifier whose length is uniform over [min_length, max_length].

        Raises:
            InvalidRangeError: If ``min_length > max_length`` or either bound
                lies outside [43, 128].
        """
        if min_length > max_length:
            raise InvalidRangeError(f"min_length {min_length} exceeds max_length {max_length}")
        for bound in (min_length, max_length):
            if not MIN_VERIFIER_LENGTH <= bound <= MAX_VERIFIER_LENGTH:
                raise InvalidRangeError(
                    f"length bound {bound} outside [{MIN_VERIFIER_LENGTH}, {MAX_VERIFIER_LENGTH}]"
                )

        length = min_length + secrets.randbelow(max_length - min_length + 1)
        return cls("".join(secrets.choice(UNRESERVED_CHARACTERS) for _ in range(length)))

    @property
    def raw_value(self) -> str:
        """The verifier itself, sent only in the token exchange."""
        return self._value

    def code_challenge(self) -> str:
        return derive_code_challenge(self._value)

    def __repr__(self) -> str:
        return f"CodeVerifier(length={len(self._value)})"
