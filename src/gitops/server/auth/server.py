"""Auth server: OIDC authorization-code flow, local sign-in, user info, logout.

Routes (under a configurable prefix, default ``/oauth2``):

| Method | Path                | Handler        |
|--------|---------------------|----------------|
| GET    | ``{prefix}``        | oauth2_flow    |
| GET    | ``{prefix}/callback`` | callback     |
| POST   | ``{prefix}/sign_in``  | sign_in      |
| GET    | ``{prefix}/userinfo`` | user_info    |
| POST   | ``{prefix}/logout``   | logout       |

CSRF protection is stateless: the encoded session state travels in both the
``state`` cookie and the ``state`` query parameter, and the callback refuses
to exchange the code unless the two are byte-identical.
"""

from __future__ import annotations

import hmac
import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from pydantic import BaseModel, ValidationError

from gitops.foundation.exceptions import (
    AuthenticationError,
    ConfigurationError,
    DomainError,
    InternalError,
    ProtocolViolationError,
    UpstreamError,
)
from gitops.infra.fastapi.error_handlers import problem_response
from gitops.server.auth.oidc import (
    SCOPE_PROFILE,
    IDTokenVerificationError,
    OIDCProvider,
    UserInfoError,
    merge_scopes,
)
from gitops.server.auth.resolvers import (
    ID_TOKEN_COOKIE_NAME,
    AdminCookiePrincipalResolver,
    AuthorizationHeaderPrincipalResolver,
    CompositePrincipalResolver,
    IDTokenCookiePrincipalResolver,
    PrincipalResolver,
)
from gitops.server.auth.secrets import check_password
from gitops.server.auth.state import SessionState, generate_nonce
from gitops.server.auth.tokens import HMACTokenSignerVerifier, TokenVerificationError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    import httpx

    from gitops.server.auth.oidc import IDTokenVerifier
    from gitops.server.auth.secrets import AdminPasswordReader
    from gitops.server.auth.settings import AuthSettings

logger = logging.getLogger(__name__)

STATE_COOKIE_NAME = "state"
REFRESH_TOKEN_COOKIE_NAME = "refresh_token"
STATE_COOKIE_MAX_AGE = 600


class LoginRequest(BaseModel):
    """Body of the local sign-in request."""

    password: str


class UserInfo(BaseModel):
    """Response body of the user-info endpoint."""

    email: str
    groups: list[str]


class AuthServer:
    """Handles the OAuth2/OIDC flow and local admin login.

    Build with :meth:`create`, which performs provider discovery when an
    issuer is configured and owns a freshly generated signing secret.

    Args:
        config: Auth settings.
        provider: Discovered OIDC provider, or None when no issuer is configured.
        secret_reader: Source of the admin password hash.
        token_signer: Signer/verifier for locally issued tokens.
    """

    def __init__(
        self,
        config: AuthSettings,
        *,
        provider: OIDCProvider | None,
        secret_reader: AdminPasswordReader,
        token_signer: HMACTokenSignerVerifier,
    ) -> None:
        self._config = config
        self._provider = provider
        self._secret_reader = secret_reader
        self._signer = token_signer
        self._redirect_url = config.oidc_redirect_url
        self._resolver: CompositePrincipalResolver | None = None

    @classmethod
    async def create(
        cls,
        config: AuthSettings,
        *,
        http_client: httpx.AsyncClient,
        secret_reader: AdminPasswordReader,
        token_signer: HMACTokenSignerVerifier | None = None,
    ) -> AuthServer:
        """Build an auth server, discovering the OIDC provider if one is configured.

        Raises:
            ConfigurationError: If the OIDC configuration is incomplete.
            OIDCDiscoveryError: If provider discovery fails.
        """
        try:
            config.validate_oidc_config()
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc

        provider = None
        if config.is_oidc_configured():
            provider = await OIDCProvider.discover(config.oidc_issuer_url, http_client)

        if token_signer is None:
            token_signer = HMACTokenSignerVerifier(config.token_duration)

        logger.info(
            "auth_server_created",
            extra={"oidc_enabled": provider is not None, "route_prefix": config.route_prefix},
        )
        return cls(
            config,
            provider=provider,
            secret_reader=secret_reader,
            token_signer=token_signer,
        )

    @property
    def config(self) -> AuthSettings:
        return self._config

    @property
    def token_signer(self) -> HMACTokenSignerVerifier:
        return self._signer

    @property
    def redirect_url(self) -> str:
        return self._redirect_url

    def oidc_enabled(self) -> bool:
        return self._provider is not None

    def set_redirect_url(self, url: str) -> None:
        """Override the callback URL; for tests that learn it after startup."""
        self._redirect_url = url

    def verifier(self) -> IDTokenVerifier:
        """ID token verifier bound to the configured client id.

        Raises:
            ConfigurationError: If no identity provider is configured.
        """
        provider = self._require_provider()
        return provider.verifier(self._config.oidc_client_id, self._config.clock_skew_leeway)

    def principal_resolver(self) -> CompositePrincipalResolver:
        """Composite resolver used by the API auth middleware.

        The admin-cookie resolver comes first since it needs no network call;
        the OIDC resolvers are added only when a provider is configured.
        """
        if self._resolver is None:
            resolvers: list[PrincipalResolver] = [AdminCookiePrincipalResolver(self._signer)]
            if self._provider is not None:
                verifier = self.verifier()
                resolvers.append(AuthorizationHeaderPrincipalResolver(verifier))
                resolvers.append(IDTokenCookiePrincipalResolver(verifier))
            self._resolver = CompositePrincipalResolver(resolvers)
        return self._resolver

    # -- handlers -----------------------------------------------------------

    async def oauth2_flow(self, request: Request) -> Response:
        """Start the OIDC flow: set the state cookie and redirect to the provider."""
        provider = self._require_provider()

        return_url = request.query_params.get("return_url") or str(request.url)
        state = SessionState(nonce=generate_nonce(), return_url=return_url).encode()

        authorize_url = provider.authorization_url(
            client_id=self._config.oidc_client_id,
            redirect_uri=self._redirect_url,
            scopes=merge_scopes([SCOPE_PROFILE]),
            state=state,
        )

        response = RedirectResponse(authorize_url, status_code=303)
        self._set_cookie(response, STATE_COOKIE_NAME, state, max_age=STATE_COOKIE_MAX_AGE)
        logger.info("oidc_flow_started", extra={"path": request.url.path})
        return response

    async def callback(self, request: Request) -> Response:
        """Complete the OIDC flow and issue the id/refresh token cookies.

        The state cookie is cleared whether the flow succeeds or fails.
        """
        try:
            session, id_token, refresh_token = await self._complete_flow(request)
        except DomainError as exc:
            logger.info(
                "oidc_callback_failed",
                extra={"error_code": exc.error_code, "reason": exc.message},
            )
            response = problem_response(request, exc)
            self._clear_cookie(response, STATE_COOKIE_NAME)
            return response
        except Exception:
            logger.exception("oidc_callback_crashed")
            response = problem_response(request, InternalError("Internal server error"))
            self._clear_cookie(response, STATE_COOKIE_NAME)
            return response

        response = RedirectResponse(session.return_url, status_code=303)
        self._set_cookie(response, ID_TOKEN_COOKIE_NAME, id_token)
        if refresh_token:
            self._set_cookie(response, REFRESH_TOKEN_COOKIE_NAME, refresh_token)
        self._clear_cookie(response, STATE_COOKIE_NAME)
        logger.info("oidc_callback_succeeded")
        return response

    async def sign_in(self, request: Request) -> Response:
        """Verify the admin password and issue a locally signed ``id_token`` cookie."""
        body = await request.body()
        try:
            login = LoginRequest.model_validate_json(body)
        except ValidationError as exc:
            raise ProtocolViolationError(
                "Failed to read request body.", error_code="MALFORMED_BODY"
            ) from exc

        password_hash = await self._secret_reader.read_password_hash()

        if not check_password(login.password, password_hash):
            logger.info("admin_sign_in_rejected")
            raise AuthenticationError("invalid password", error_code="INVALID_CREDENTIALS")

        response = Response(status_code=200)
        self._set_cookie(response, ID_TOKEN_COOKIE_NAME, self._signer.sign())
        logger.info("admin_sign_in_succeeded")
        return response

    async def user_info(self, request: Request) -> Response:
        """Describe the caller identified by the ``id_token`` cookie.

        A locally signed token yields the admin subject with no groups.
        Anything else is sent to the provider's user-info endpoint as a
        bearer access token.
        """
        token = request.cookies.get(ID_TOKEN_COOKIE_NAME)
        if not token:
            raise ProtocolViolationError(
                "id_token cookie not present", error_code="MISSING_ID_TOKEN"
            )

        try:
            claims = self._signer.verify(token)
        except TokenVerificationError:
            pass
        else:
            return JSONResponse(UserInfo(email=claims.subject, groups=[]).model_dump())

        if self._provider is None:
            raise AuthenticationError(
                "token is not a valid local token", error_code="INVALID_TOKEN"
            )

        try:
            info = await self._provider.user_info(token)
        except UserInfoError as exc:
            raise AuthenticationError(
                "failed to query user info endpoint", error_code="USERINFO_REJECTED"
            ) from exc

        groups = info.get("groups") or []
        if isinstance(groups, str):
            groups = [groups]
        user = UserInfo(email=str(info.get("email", "")), groups=[str(g) for g in groups])
        return JSONResponse(user.model_dump())

    async def logout(self, request: Request) -> Response:
        """Clear the ``id_token`` cookie. Provider-side tokens are not revoked."""
        response = Response(status_code=200)
        self._clear_cookie(response, ID_TOKEN_COOKIE_NAME)
        logger.info("logout")
        return response

    # -- internals ----------------------------------------------------------

    async def _complete_flow(self, request: Request) -> tuple[SessionState, str, str | None]:
        params = request.query_params

        if error := params.get("error"):
            logger.info(
                "authz_redirect_callback_failed",
                extra={"error": error, "error_description": params.get("error_description", "")},
            )
            raise ProtocolViolationError(
                "identity provider reported an error",
                error_code="PROVIDER_ERROR",
                context={"error": error},
            )

        code = params.get("code", "")
        if not code:
            raise ProtocolViolationError("code value was empty", error_code="MISSING_CODE")

        state_cookie = request.cookies.get(STATE_COOKIE_NAME)
        if state_cookie is None:
            raise ProtocolViolationError(
                "state cookie not found", error_code="MISSING_STATE_COOKIE"
            )

        state_param = params.get("state", "")
        if not hmac.compare_digest(state_param.encode("utf-8"), state_cookie.encode("utf-8")):
            raise ProtocolViolationError(
                "state parameter does not match state cookie", error_code="CSRF_MISMATCH"
            )

        session = SessionState.decode(state_cookie)

        provider = self._require_provider()
        tokens = await provider.exchange_code(
            code=code,
            redirect_uri=self._redirect_url,
            client_id=self._config.oidc_client_id,
            client_secret=self._config.oidc_client_secret,
        )

        if not tokens.id_token:
            raise UpstreamError("no id_token in token response", error_code="MISSING_ID_TOKEN")

        try:
            await self.verifier().verify(tokens.id_token)
        except IDTokenVerificationError as exc:
            raise UpstreamError(
                "failed to verify ID token",
                error_code="ID_TOKEN_REJECTED",
                context={"reason": exc.error_code},
            ) from exc

        return session, tokens.id_token, tokens.refresh_token

    def _require_provider(self) -> OIDCProvider:
        if self._provider is None:
            raise ConfigurationError("oidc provider not configured")
        return self._provider

    def _set_cookie(
        self,
        response: Response,
        name: str,
        value: str,
        *,
        max_age: int | None = None,
    ) -> None:
        if max_age is None:
            max_age = int(self._config.token_duration.total_seconds())
        response.set_cookie(
            name,
            value,
            max_age=max_age,
            expires=max_age,
            path="/",
            secure=self._config.cookie_secure,
            httponly=True,
            samesite="lax",
        )

    def _clear_cookie(self, response: Response, name: str) -> None:
        response.delete_cookie(
            name,
            path="/",
            secure=self._config.cookie_secure,
            httponly=True,
            samesite="lax",
        )


def auth_route_paths(prefix: str) -> list[str]:
    """Exact paths served by :func:`build_auth_router` under ``prefix``."""
    return [
        prefix,
        f"{prefix}/callback",
        f"{prefix}/sign_in",
        f"{prefix}/userinfo",
        f"{prefix}/logout",
    ]


def _endpoint(server: AuthServer | None, handler: str) -> Callable[[Request], Awaitable[Response]]:
    """Bind a handler to ``server``, or to ``request.app.state.auth_server`` when None."""
    if server is not None:
        return getattr(server, handler)

    async def endpoint(request: Request) -> Response:
        app_server: AuthServer | None = getattr(request.app.state, "auth_server", None)
        if app_server is None:
            raise InternalError("auth server is not initialised")
        return await getattr(app_server, handler)(request)

    endpoint.__name__ = handler
    return endpoint


def build_auth_router(server: AuthServer | None = None, prefix: str = "/oauth2") -> APIRouter:
    """Mount the auth handlers, one permitted method per route.

    Requests with any other method get 405 with an ``Allow`` header. Without
    a server, handlers use the one the application lifespan stores on
    ``app.state.auth_server``.
    """
    start, callback, sign_in, userinfo, logout = auth_route_paths(prefix)
    router = APIRouter(tags=["auth"])
    router.add_api_route(
        start, _endpoint(server, "oauth2_flow"), methods=["GET"], name="oauth2_flow"
    )
    router.add_api_route(
        callback, _endpoint(server, "callback"), methods=["GET"], name="oauth2_callback"
    )
    router.add_api_route(sign_in, _endpoint(server, "sign_in"), methods=["POST"], name="sign_in")
    router.add_api_route(
        userinfo, _endpoint(server, "user_info"), methods=["GET"], name="userinfo"
    )
    router.add_api_route(logout, _endpoint(server, "logout"), methods=["POST"], name="logout")
    return router
