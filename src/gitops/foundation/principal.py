"""Principal value object representing an authenticated caller.

Pure domain object with no external dependencies. Immutable (frozen dataclass).
Built by a principal resolver after exactly one credential has been verified.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class UserPrincipal:
    """Authenticated identity performing a request.

    Attributes:
        id: Subject identifier: the email claim for OIDC callers, or the
            local admin subject for cookie-signed admin sessions.
        groups: Group names from the ID token 'groups' claim. Empty tuple
            if absent or for the local admin.
    """

    id: str
    groups: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("principal id must not be empty")
