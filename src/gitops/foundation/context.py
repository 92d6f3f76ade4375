"""Request-scoped principal context.

Holds the authenticated principal for the lifetime of a single request in a
ContextVar, so downstream handlers can read it without re-resolving
credentials. The API auth middleware sets it after successful resolution and
resets it when the request completes.

Usage:
    from gitops.foundation.context import get_current_principal

    principal = get_current_principal()  # Raises if no principal context
"""

from __future__ import annotations

from contextvars import ContextVar
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from contextvars import Token

    from gitops.foundation.principal import UserPrincipal


class NoPrincipalContextError(RuntimeError):
    """Raised when the principal is accessed outside an authenticated request."""

    def __init__(self) -> None:
        super().__init__(
            "No principal available. "
            "Ensure this code is called within a request that passed API auth middleware."
        )


# None when no authenticated request is active
_principal_context: ContextVar[UserPrincipal | None] = ContextVar(
    "principal_context", default=None
)


def set_principal_context(principal: UserPrincipal) -> Token[UserPrincipal | None]:
    """Set the authenticated principal for the current request.

    Args:
        principal: Principal produced by a successful resolver.

    Returns:
        Token for resetting the context.
    """
    return _principal_context.set(principal)


def clear_principal_context(token: Token[UserPrincipal | None]) -> None:
    """Reset the principal context using the provided token.

    Called in the middleware finally block after the request completes.

    Args:
        token: Token from set_principal_context.
    """
    _principal_context.reset(token)


def get_current_principal() -> UserPrincipal:
    """Get the authenticated principal from request context.

    Raises:
        NoPrincipalContextError: If called outside an authenticated request.
    """
    principal = _principal_context.get()
    if principal is None:
        raise NoPrincipalContextError()
    return principal


def get_optional_principal() -> UserPrincipal | None:
    """Get the authenticated principal if available, or None."""
    return _principal_context.get()
