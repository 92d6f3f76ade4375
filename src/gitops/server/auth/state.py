"""CSRF state carried through the OIDC authorization-code flow.

The same encoded value is placed in the short-lived ``state`` cookie and in
the ``state`` query parameter sent to the identity provider. At callback time
the two copies are compared byte-for-byte before anything is decoded.
"""

from __future__ import annotations

import base64
import binascii
import json
import secrets
from dataclasses import dataclass

from gitops.foundation.exceptions import ProtocolViolationError

NONCE_BYTES = 32


class MalformedStateError(ProtocolViolationError):
    """Raised when a state value is not base64-encoded JSON of the expected shape."""

    error_code = "MALFORMED_STATE"


def generate_nonce() -> str:
    """Return base64 of 32 bytes from a CSPRNG."""
    return base64.b64encode(secrets.token_bytes(NONCE_BYTES)).decode("ascii")


@dataclass(frozen=True, slots=True)
class SessionState:
    """Nonce and post-login return URL for one authorization attempt.

    Attributes:
        nonce: Random value making each state unique.
        return_url: Where to redirect after a successful callback.
    """

    nonce: str
    return_url: str

    def encode(self) -> str:
        """Serialize as base64-standard(JSON({"n": ..., "return_url": ...}))."""
        payload = json.dumps({"n": self.nonce, "return_url": self.return_url})
        return base64.b64encode(payload.encode("utf-8")).decode("ascii")

    @classmethod
    def decode(cls, value: str) -> SessionState:
        """Parse an encoded state value.

        Raises:
            MalformedStateError: On invalid base64, invalid JSON, or missing
                string fields.
        """
        try:
            raw = base64.b64decode(value, validate=True)
            payload = json.loads(raw)
        except (binascii.Error, ValueError) as exc:
            raise MalformedStateError("state value could not be decoded") from exc

        if not isinstance(payload, dict):
            raise MalformedStateError("state value is not a JSON object")

        nonce = payload.get("n")
        return_url = payload.get("return_url")
        if not isinstance(nonce, str) or not isinstance(return_url, str):
            raise MalformedStateError("state value is missing nonce or return_url")

        return cls(nonce=nonce, return_url=return_url)
