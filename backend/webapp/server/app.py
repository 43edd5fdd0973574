from __future__ import annotations

import contextlib
from http import HTTPStatus
from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.middleware.authentication import AuthenticationMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from starlette.routing import Route

from accounts.auth import AuthError, AuthService, ExpiryJanitor, LinkBuilder, TokenCodec, get_hasher, get_notifier
from accounts.auth.service import utcnow
from accounts.auth.settings import AuthSettings, MailSettings
from accounts.db import Database, SqliteCredentialStore
from accounts.logging import setup_logging
from webapp.auth.backend import SessionTokenBackend
from webapp.auth.policy import optional_auth, protected_api, public_route, validate_route_auth_policy
from webapp.server.middleware import SecurityHeadersMiddleware, SlashNormalizationMiddleware
from webapp.server.settings import AppSettings
from webapp.views import (
    change_password,
    check_email_validation,
    confirm_email_change,
    create_templates,
    current_user,
    forgot_password,
    login,
    logout,
    request_email_change,
    reset_password,
    signup,
    update_avatar,
    update_optional,
    update_optional_enhanced,
    update_profile,
    verify_email,
)

logger = structlog.get_logger()

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from starlette.requests import Request
    from starlette.responses import Response

    from accounts.auth.notifications import Notifier

SERVER_ERROR_MESSAGE = "Server error. Please try again."


async def _auth_error_handler(_request: Request, exc: Exception) -> Response:
    error = exc if isinstance(exc, AuthError) else AuthError()
    return JSONResponse({"success": False, "message": error.message}, status_code=error.status_code)


async def _validation_error_handler(_request: Request, exc: Exception) -> Response:
    errors = []
    if isinstance(exc, ValidationError):
        errors = exc.errors(include_url=False, include_context=False, include_input=False)
    return JSONResponse(
        {"success": False, "message": "Invalid request data.", "errors": errors},
        status_code=HTTPStatus.BAD_REQUEST,
    )


async def _server_error_handler(request: Request, exc: Exception) -> Response:
    """Log unexpected failures with context; never echo internals to the client."""
    logger.error("unhandled error", method=request.method, path=request.url.path, exc_info=exc)
    return JSONResponse(
        {"success": False, "message": SERVER_ERROR_MESSAGE},
        status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
    )


async def health(request: Request) -> JSONResponse:
    settings: AppSettings = request.app.state.settings
    return JSONResponse({"status": "ok", "version": settings.version})


def create_app(
    settings: AppSettings | None = None,
    auth_settings: AuthSettings | None = None,  # required in production (via get_app)
    mail_settings: MailSettings | None = None,
    *,
    notifier: Notifier | None = None,
) -> Starlette:
    if settings is None:  # pragma: no cover
        settings = AppSettings()
    if auth_settings is None:  # pragma: no cover
        auth_settings = AuthSettings()  # type: ignore[call-arg]
    if mail_settings is None:
        mail_settings = MailSettings()

    routes = [
        # Public routes
        Route("/health", public_route(health), methods=["GET"], name="health"),
        Route("/auth/signup", public_route(signup), methods=["POST"], name="signup"),
        Route("/auth/verify-email/{token}", public_route(verify_email), methods=["GET"], name="verify_email"),
        Route("/auth/login", public_route(login), methods=["POST"], name="login"),
        Route(
            "/auth/check-email-validation",
            public_route(check_email_validation),
            methods=["GET"],
            name="check_email_validation",
        ),
        Route("/auth/forgot-password", public_route(forgot_password), methods=["POST"], name="forgot_password"),
        Route("/auth/reset-password", public_route(reset_password), methods=["POST"], name="reset_password"),
        Route(
            "/auth/confirm-email-change",
            public_route(confirm_email_change),
            methods=["GET"],
            name="confirm_email_change",
        ),
        Route("/auth/update-optional", public_route(update_optional), methods=["POST"], name="update_optional"),
        # Session is used when present
        Route("/auth/logout", optional_auth(logout), methods=["POST"], name="logout"),
        Route(
            "/auth/update-optional-enhanced",
            optional_auth(update_optional_enhanced),
            methods=["POST"],
            name="update_optional_enhanced",
        ),
        # Protected JSON routes (401 JSON when the session is missing or invalid)
        Route("/auth/current-user", protected_api(current_user), methods=["GET"], name="current_user"),
        Route("/auth/profile", protected_api(update_profile), methods=["PUT"], name="update_profile"),
        Route("/auth/change-password", protected_api(change_password), methods=["POST"], name="change_password"),
        Route(
            "/auth/request-email-change",
            protected_api(request_email_change),
            methods=["POST"],
            name="request_email_change",
        ),
        Route("/auth/avatar", protected_api(update_avatar), methods=["PATCH"], name="update_avatar"),
    ]
    validate_route_auth_policy(routes)

    db = Database(auth_settings.database_path)
    db.connect()
    store = SqliteCredentialStore(db)
    if notifier is None:
        notifier = get_notifier(mail_settings, LinkBuilder(api_url=settings.api_url, client_url=settings.client_url))
    auth_service = AuthService(
        store,
        TokenCodec(auth_settings.secret_key),
        notifier,
        password_hasher=get_hasher(auth_settings.password_hasher),
        avatar_storage_host=settings.avatar_storage_host,
    )
    janitor = ExpiryJanitor(store, clock=utcnow)

    @contextlib.asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncGenerator[None]:
        janitor.start()
        yield
        await janitor.stop()
        db.close()

    app = Starlette(
        routes=routes,
        lifespan=lifespan,
        exception_handlers={
            AuthError: _auth_error_handler,
            ValidationError: _validation_error_handler,
            Exception: _server_error_handler,
        },
    )
    app.add_middleware(SlashNormalizationMiddleware)  # type: ignore[arg-type]
    app.add_middleware(AuthenticationMiddleware, backend=SessionTokenBackend(auth_service))  # type: ignore[arg-type]
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH"],
        allow_headers=["Content-Type"],
    )
    app.add_middleware(SecurityHeadersMiddleware)  # type: ignore[arg-type]

    app.state.db = db
    app.state.settings = settings
    app.state.auth_settings = auth_settings
    app.state.auth_service = auth_service
    app.state.janitor = janitor
    app.state.templates = create_templates()

    logger.info("web server ready", environment=settings.environment)
    return app


def get_app() -> Starlette:  # pragma: no cover
    """Factory function for uvicorn --factory webapp.server.app:get_app."""
    s = AppSettings()
    auth = AuthSettings()  # ty: ignore[missing-argument]
    setup_logging(log_dir=s.log_dir)
    return create_app(settings=s, auth_settings=auth, mail_settings=MailSettings())
