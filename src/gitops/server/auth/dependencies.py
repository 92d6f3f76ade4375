"""FastAPI dependency functions for the authenticated principal.

Usage:
    from gitops.server.auth.dependencies import CurrentPrincipal

    @router.get("/v1/whoami")
    def whoami(principal: CurrentPrincipal) -> dict[str, str]:
        return {"id": principal.id}
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends

from gitops.foundation.context import get_current_principal as _get_principal_from_context
from gitops.foundation.principal import UserPrincipal


def get_current_principal() -> UserPrincipal:
    """FastAPI dependency that returns the authenticated principal.

    Reads from the principal ContextVar set by APIAuthMiddleware.

    Raises:
        NoPrincipalContextError: If called outside an authenticated request.
    """
    return _get_principal_from_context()


CurrentPrincipal = Annotated[UserPrincipal, Depends(get_current_principal)]
