"""RFC 7807 Problem Details exception handlers for FastAPI.

Translates the exception families of ``gitops.foundation.exceptions`` into
``application/problem+json`` responses:

- ConfigurationError -> 400
- ProtocolViolationError -> 400
- AuthenticationError -> 401 with WWW-Authenticate
- UpstreamError -> 500 with correlation_id
- InternalError -> 500 with correlation_id
- DomainError -> 400 (fallback)
- Exception -> 500 (catch-all, no details leaked)

Usage:
    from gitops.infra.fastapi.error_handlers import register_exception_handlers

    app = FastAPI()
    register_exception_handlers(app)
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from typing import TYPE_CHECKING, Any, NamedTuple

from pydantic import BaseModel, Field

from fastapi.responses import JSONResponse
from gitops.foundation.exceptions import (
    AuthenticationError,
    ConfigurationError,
    DomainError,
    InternalError,
    ProtocolViolationError,
    UpstreamError,
)
from gitops.infra.fastapi.middleware.request_id import get_request_id

if TYPE_CHECKING:
    from fastapi import FastAPI, Request

logger = logging.getLogger(__name__)

PROBLEM_MEDIA_TYPE = "application/problem+json"


class ProblemDetail(BaseModel):
    """RFC 7807 Problem Details response model.

    Extension fields:
    - error_code: Machine-readable error code for client handling
    - context: Structured debugging information
    - correlation_id: Request correlation ID (5xx errors only)
    """

    type: str = Field(
        ...,
        description="URI reference identifying problem type",
        examples=["/errors/protocol-violation", "/errors/upstream-failure"],
    )
    title: str = Field(..., description="Short human-readable summary")
    status: int = Field(..., ge=400, le=599, description="HTTP status code")
    detail: str = Field(..., description="Human-readable explanation")
    instance: str | None = Field(
        default=None,
        description="URI reference to specific occurrence (request path)",
    )
    error_code: str | None = Field(
        default=None,
        description="Machine-readable error code",
        examples=["CSRF_MISMATCH", "TOKEN_EXPIRED"],
    )
    context: dict[str, Any] | None = Field(
        default=None,
        description="Structured debugging information",
    )
    correlation_id: str | None = Field(
        default=None,
        description="Request correlation ID for support requests",
    )


class _ProblemKind(NamedTuple):
    status: int
    title: str


# Most specific first; lookup walks the exception's MRO
_PROBLEM_KINDS: dict[type[DomainError], _ProblemKind] = {
    AuthenticationError: _ProblemKind(401, "Unauthorized"),
    ConfigurationError: _ProblemKind(400, "Bad Request"),
    ProtocolViolationError: _ProblemKind(400, "Bad Request"),
    UpstreamError: _ProblemKind(500, "Upstream Failure"),
    InternalError: _ProblemKind(500, "Internal Server Error"),
    DomainError: _ProblemKind(400, "Bad Request"),
}

_SENSITIVE_KEYS = frozenset(
    {
        "password",
        "secret",
        "client_secret",
        "token",
        "id_token",
        "access_token",
        "refresh_token",
        "code",
        "code_verifier",
        "cookie",
        "credential",
    }
)

_SENSITIVE_PATTERNS = [
    (
        re.compile(r"password\s*=\s*['\"]?[^'\"\s&]+['\"]?", re.IGNORECASE),
        "password=[REDACTED]",
    ),
    (
        re.compile(r"client_secret\s*=\s*['\"]?[^'\"\s&]+['\"]?", re.IGNORECASE),
        "client_secret=[REDACTED]",
    ),
    (
        re.compile(r"(code_verifier|code)\s*=\s*['\"]?[^'\"\s&]+['\"]?", re.IGNORECASE),
        r"\1=[REDACTED]",
    ),
    (
        re.compile(r"token\s*=\s*['\"]?[^'\"\s&]+['\"]?", re.IGNORECASE),
        "token=[REDACTED]",
    ),
    (
        re.compile(r"Bearer\s+[A-Za-z0-9\-._~+/]+=*"),
        "Bearer [REDACTED]",
    ),
]


def _problem_kind(exc: DomainError) -> _ProblemKind:
    for cls in type(exc).__mro__:
        kind = _PROBLEM_KINDS.get(cls)
        if kind is not None:
            return kind
    return _PROBLEM_KINDS[DomainError]


def _problem_type(error_code: str) -> str:
    return f"/errors/{error_code.lower().replace('_', '-')}"


def _create_problem_response(problem: ProblemDetail) -> JSONResponse:
    return JSONResponse(
        status_code=problem.status,
        content=problem.model_dump(exclude_none=True),
        media_type=PROBLEM_MEDIA_TYPE,
    )


def _get_correlation_id() -> str:
    """Request ID set by RequestIdMiddleware, or "unknown" outside a request."""
    return get_request_id() or "unknown"


def _sanitize_context(context: dict[str, Any] | None) -> dict[str, Any] | None:
    """Drop sensitive keys and make values JSON-safe.

    Returns:
        Sanitized context dictionary, or None when nothing is left.
    """
    if not context:
        return None

    sanitized = {}
    for key, value in context.items():
        if key.lower() in _SENSITIVE_KEYS:
            continue
        sanitized[key] = _sanitize_value(value)

    return sanitized or None


def _sanitize_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, str):
        return _redact_sensitive_strings(value)
    if isinstance(value, dict):
        return _sanitize_context(value)
    if isinstance(value, (list, tuple)):
        return [_sanitize_value(v) for v in value]
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


def _redact_sensitive_strings(text: str) -> str:
    result = text
    for pattern, replacement in _SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def problem_response(request: Request, exc: DomainError) -> JSONResponse:
    """Build the problem+json response for a domain error.

    Used by the registered exception handler and directly by route handlers
    that must also change cookies on the failure response.

    Args:
        request: The request that failed.
        exc: Domain error raised while handling it.

    Returns:
        JSONResponse with the mapped status. 401 responses carry a
        WWW-Authenticate header (RFC 6750); 5xx responses carry the
        correlation ID.
    """
    kind = _problem_kind(exc)
    is_server_error = kind.status >= 500
    problem = ProblemDetail(
        type=_problem_type(exc.error_code),
        title=kind.title,
        status=kind.status,
        detail=_redact_sensitive_strings(exc.message),
        instance=str(request.url.path),
        error_code=exc.error_code,
        context=_sanitize_context(exc.context),
        correlation_id=_get_correlation_id() if is_server_error else None,
    )
    response = _create_problem_response(problem)
    if isinstance(exc, AuthenticationError):
        response.headers["WWW-Authenticate"] = f'Bearer realm="API", error="{exc.auth_error}"'
    return response


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Translate any DomainError subclass to its problem response."""
    response = problem_response(request, exc)
    if response.status_code >= 500:
        logger.error(
            "domain_error",
            extra={
                "path": str(request.url.path),
                "method": request.method,
                "error_code": exc.error_code,
                "exception_type": type(exc).__name__,
            },
        )
    return response


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Catch-all handler for unhandled exceptions.

    Logs full exception details but returns a sanitized response. In debug
    mode the exception type and message are included in the body.
    """
    correlation_id = _get_correlation_id()

    logger.exception(
        "unhandled_exception",
        extra={
            "correlation_id": correlation_id,
            "path": str(request.url.path),
            "method": request.method,
            "exception_type": type(exc).__name__,
        },
    )

    debug_mode = getattr(request.app, "debug", False)

    if debug_mode:
        detail = _redact_sensitive_strings(f"{type(exc).__name__}: {exc}")
        context: dict[str, Any] | None = {"exception_type": type(exc).__name__}
    else:
        detail = "An internal error occurred. Please contact support with the correlation ID."
        context = None

    problem = ProblemDetail(
        type="/errors/internal-error",
        title="Internal Server Error",
        status=500,
        detail=detail,
        instance=str(request.url.path),
        error_code="INTERNAL_ERROR",
        context=context,
        correlation_id=correlation_id,
    )
    return _create_problem_response(problem)


def register_exception_handlers(app: FastAPI) -> None:
    """Register the domain and catch-all exception handlers on an application.

    Starlette dispatches on the exception's MRO, so a single DomainError
    handler covers every family; ``problem_response`` picks the status.

    Args:
        app: FastAPI application instance
    """
    # Starlette's handler typing is stricter than what works at runtime
    app.add_exception_handler(
        DomainError,
        domain_error_handler,  # type: ignore[arg-type]
    )
    app.add_exception_handler(Exception, unhandled_exception_handler)
