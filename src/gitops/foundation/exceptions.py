"""Exception hierarchy for type-safe error handling.

Every failure in the auth subsystem is raised as one of the families below
and translated to an HTTP status at the boundary where it is detected.
Exceptions carry a machine-readable error code and structured context
for consistent API error handling and logging.

Example:
    >>> from gitops.foundation.exceptions import ProtocolViolationError
    >>> raise ProtocolViolationError("state mismatch", error_code="CSRF_MISMATCH")
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "AuthenticationError",
    "ConfigurationError",
    "DomainError",
    "InternalError",
    "ProtocolViolationError",
    "UpstreamError",
]


class DomainError(Exception):
    """Base class for all domain errors.

    Provides error code and structured context for debugging. All domain
    exceptions inherit from this class to enable consistent API error
    handling and logging.

    Attributes:
        error_code: Machine-readable error code for client handling.
        message: Human-readable error description.
        context: Structured debugging information (paths, provider names).

    Example:
        >>> raise DomainError("Operation failed", context={"route": "/oauth2"})
        DomainError: Operation failed (route=/oauth2)
    """

    error_code: str = "DOMAIN_ERROR"

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        *,
        error_code: str | None = None,
    ) -> None:
        """Initialize domain error with message and optional context.

        Args:
            message: Human-readable error description.
            context: Structured debugging information. Keys should be snake_case.
                     Never put credentials in here.
            error_code: Overrides the class-level error code for this instance.
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}
        if error_code is not None:
            self.error_code = error_code

    def __str__(self) -> str:
        """String representation including context for logging."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message

    def __repr__(self) -> str:
        """Detailed representation for debugging."""
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(DomainError):
    """Raised when a route needs configuration that is absent.

    Maps to HTTP 400 Bad Request. Terminal, never retried.

    Example:
        >>> raise ConfigurationError("oidc provider not configured")
    """

    error_code: str = "CONFIGURATION_ERROR"


class ProtocolViolationError(DomainError):
    """Raised when a request breaks the expected protocol.

    Covers CSRF state mismatch, malformed state, and missing required
    parameters. Maps to HTTP 400 Bad Request.

    Example:
        >>> raise ProtocolViolationError("code value was empty", error_code="MISSING_CODE")
    """

    error_code: str = "PROTOCOL_VIOLATION"


class AuthenticationError(DomainError):
    """Raised when a credential is missing, invalid, or expired.

    Maps to HTTP 401 Unauthorized. All 401 responses MUST include
    WWW-Authenticate header per RFC 6750. Callers restart the relevant
    flow; nothing retries automatically.

    Attributes:
        error_code: Machine-readable error code (e.g., "TOKEN_EXPIRED").
        auth_error: RFC 6750 error code for WWW-Authenticate header.

    Example:
        >>> raise AuthenticationError("Token has expired", auth_error="invalid_token",
        ...     error_code="TOKEN_EXPIRED")
    """

    error_code: str = "AUTHENTICATION_ERROR"

    def __init__(
        self,
        message: str,
        auth_error: str = "invalid_token",
        error_code: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Initialize authentication error.

        Args:
            message: Human-readable error description.
            auth_error: RFC 6750 error code for WWW-Authenticate header.
            error_code: Machine-readable error code for client handling.
            context: Structured debugging information.
        """
        self.auth_error = auth_error
        super().__init__(message, context, error_code=error_code)


class UpstreamError(DomainError):
    """Raised when a call to the identity provider fails.

    Maps to HTTP 500. Terminal for the request; operators alert on
    elevated rates of this class.
    """

    error_code: str = "UPSTREAM_FAILURE"


class InternalError(DomainError):
    """Raised for marshalling and secret read failures.

    Maps to HTTP 500 Internal Server Error.
    """

    error_code: str = "INTERNAL_ERROR"
