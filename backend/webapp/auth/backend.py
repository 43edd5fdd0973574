"""Starlette AuthenticationBackend that resolves the session cookie to an account."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

from starlette.authentication import AuthCredentials, AuthenticationBackend

from accounts.auth.errors import AccountNotFound
from accounts.auth.tokens import TokenExpired, TokenInvalid
from webapp.auth.models import AuthenticatedAccount

if TYPE_CHECKING:
    from starlette.requests import HTTPConnection

    from accounts.auth.service import AuthService

SESSION_COOKIE_NAME = "token"


class AuthFailure(StrEnum):
    """Why a request ended up anonymous, kept on ``request.state.auth_failure``."""

    MISSING = "missing"
    EXPIRED = "expired"
    INVALID = "invalid"
    UNKNOWN_ACCOUNT = "unknown_account"


class SessionTokenBackend(AuthenticationBackend):
    """Authenticate requests from the ``token`` session cookie.

    Never rejects on its own: a missing or bad cookie yields an anonymous
    request and the reason is recorded for route policies that require
    authentication.
    """

    def __init__(self, auth_service: AuthService) -> None:
        self._auth_service = auth_service

    async def authenticate(
        self,
        conn: HTTPConnection,
    ) -> tuple[AuthCredentials, AuthenticatedAccount] | None:
        token = conn.cookies.get(SESSION_COOKIE_NAME)
        if not token:
            conn.state.auth_failure = AuthFailure.MISSING
            return None

        try:
            account = await self._auth_service.authenticate_session(token)
        except TokenExpired:
            conn.state.auth_failure = AuthFailure.EXPIRED
            return None
        except TokenInvalid:
            conn.state.auth_failure = AuthFailure.INVALID
            return None
        except AccountNotFound:
            conn.state.auth_failure = AuthFailure.UNKNOWN_ACCOUNT
            return None

        return AuthCredentials(["authenticated"]), AuthenticatedAccount(account.profile())
