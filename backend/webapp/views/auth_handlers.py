"""Auth endpoints: signup, email confirmation, login, logout, and password reset."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING
from urllib.parse import urlencode

import structlog
from starlette.responses import JSONResponse, RedirectResponse, Response

from accounts.auth.errors import AlreadyRegistered, NoSuchPending
from accounts.auth.tokens import SESSION_TOKEN_TTL_SECONDS, TokenError
from webapp.auth.backend import SESSION_COOKIE_NAME
from webapp.views.bodies import ForgotPasswordBody, LoginBody, ResetPasswordBody, SignupBody, read_body

if TYPE_CHECKING:
    from starlette.requests import Request

    from accounts.auth.service import AuthService
    from webapp.server.settings import AppSettings

logger = structlog.get_logger()

VERIFICATION_CHANNEL = "mail_verification_channel"
FORGOT_PASSWORD_MESSAGE = "If an account is associated with this email, you will receive a reset link."


def set_session_cookie(response: Response, token: str, settings: AppSettings) -> None:
    """Attach the session token; cross-site in production, same-site in development."""
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=settings.is_production,
        samesite="none" if settings.is_production else "lax",
        max_age=SESSION_TOKEN_TTL_SECONDS,
        path="/",
    )


def clear_session_cookie(response: Response, settings: AppSettings) -> None:
    response.delete_cookie(
        key=SESSION_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="none" if settings.is_production else "lax",
    )


def _register_redirect(settings: AppSettings, flag: str) -> RedirectResponse:
    return RedirectResponse(f"{settings.client_url}/register?{urlencode({'message': flag})}", status_code=302)


async def signup(request: Request) -> Response:
    """POST /auth/signup {username, email, password} - create a pending registration."""
    auth_service: AuthService = request.app.state.auth_service
    body = await read_body(request, SignupBody)
    await auth_service.signup(body.username, body.email, body.password)
    return JSONResponse(
        {"success": True, "message": "Confirmation sent. Check your inbox."},
        status_code=201,
    )


async def verify_email(request: Request) -> Response:
    """GET /auth/verify-email/{token} - confirm a signup from the emailed link.

    Bad or expired links redirect to the client registration page with an
    error flag. On success the session cookie is set and a small page tells
    the original tab that the address is confirmed.
    """
    auth_service: AuthService = request.app.state.auth_service
    settings: AppSettings = request.app.state.settings

    try:
        grant = await auth_service.verify_email(request.path_params["token"])
    except (TokenError, NoSuchPending) as e:
        logger.info("email verification rejected", reason=type(e).__name__)
        return _register_redirect(settings, "error")
    except AlreadyRegistered:
        return _register_redirect(settings, "alreadyRegistered")

    nonce = secrets.token_urlsafe(16)
    response = request.app.state.templates.TemplateResponse(
        request,
        "email_verified.html",
        {
            "nonce": nonce,
            "channel": VERIFICATION_CHANNEL,
            "payload": {"verified": True, "userId": grant.account.account_id},
        },
        headers={
            "content-security-policy": (
                f"default-src 'none'; script-src 'nonce-{nonce}'; style-src 'unsafe-inline'; "
                "frame-ancestors 'none'; base-uri 'none'; form-action 'none'"
            ),
        },
    )
    set_session_cookie(response, grant.token, settings)
    return response


async def check_email_validation(request: Request) -> Response:
    """GET /auth/check-email-validation?email= - polled until the signup is confirmed."""
    auth_service: AuthService = request.app.state.auth_service
    account = await auth_service.check_email_validation(request.query_params.get("email", ""))
    return JSONResponse(
        {
            "validated": account is not None,
            "userId": account.account_id if account is not None else None,
        },
    )


async def login(request: Request) -> Response:
    """POST /auth/login {email, password} - set the session cookie."""
    auth_service: AuthService = request.app.state.auth_service
    body = await read_body(request, LoginBody)
    grant = await auth_service.login(body.email, body.password)

    response = JSONResponse(
        {
            "success": True,
            "message": "Login successful.",
            "user": {
                "id": grant.account.account_id,
                "username": grant.account.username,
                "email": grant.account.email,
            },
        },
    )
    set_session_cookie(response, grant.token, request.app.state.settings)
    return response


async def logout(request: Request) -> Response:
    """POST /auth/logout - clear the session cookie. Succeeds with or without a valid session."""
    response = JSONResponse({"success": True, "message": "Logged out."})
    clear_session_cookie(response, request.app.state.settings)
    if request.user.is_authenticated:
        logger.info("logout", account_id=request.user.account_id)
    return response


async def current_user(request: Request) -> Response:
    """GET /auth/current-user - the signed-in account without secrets."""
    return JSONResponse(request.user.account.public_view())


async def forgot_password(request: Request) -> Response:
    """POST /auth/forgot-password {email} - same answer whether or not the account exists."""
    auth_service: AuthService = request.app.state.auth_service
    body = await read_body(request, ForgotPasswordBody)
    await auth_service.forgot_password(body.email)
    return JSONResponse({"success": True, "message": FORGOT_PASSWORD_MESSAGE})


async def reset_password(request: Request) -> Response:
    """POST /auth/reset-password {password, token} - set a new password from a reset link."""
    auth_service: AuthService = request.app.state.auth_service
    body = await read_body(request, ResetPasswordBody)
    await auth_service.reset_password(body.token, body.password)
    return JSONResponse({"success": True, "message": "Password has been reset."})
