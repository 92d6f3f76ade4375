"""FastAPI integration: error handlers, request-id middleware, app settings.

The application factory lives in :mod:`gitops.infra.fastapi.app_factory`;
it is not re-exported here because it depends on :mod:`gitops.server.auth`,
which itself uses the error handlers of this package.
"""

from gitops.infra.fastapi.error_handlers import (
    ProblemDetail,
    problem_response,
    register_exception_handlers,
)
from gitops.infra.fastapi.middleware.request_id import (
    RequestIdMiddleware,
    get_request_id,
)
from gitops.infra.fastapi.settings import AppSettings, CORSSettings, get_app_settings

__all__ = [
    "AppSettings",
    "CORSSettings",
    "ProblemDetail",
    "RequestIdMiddleware",
    "get_app_settings",
    "get_request_id",
    "problem_response",
    "register_exception_handlers",
]
