"""Foundation layer: principal types, domain exceptions and request context.

Pure Python, no framework dependencies.
"""

from gitops.foundation.context import (
    NoPrincipalContextError,
    clear_principal_context,
    get_current_principal,
    get_optional_principal,
    set_principal_context,
)
from gitops.foundation.exceptions import (
    AuthenticationError,
    ConfigurationError,
    DomainError,
    InternalError,
    ProtocolViolationError,
    UpstreamError,
)
from gitops.foundation.principal import UserPrincipal

__all__ = [
    "AuthenticationError",
    "ConfigurationError",
    "DomainError",
    "InternalError",
    "NoPrincipalContextError",
    "ProtocolViolationError",
    "UpstreamError",
    "UserPrincipal",
    "clear_principal_context",
    "get_current_principal",
    "get_optional_principal",
    "set_principal_context",
]
