"""Web authentication: session cookie backend, request user, and route policy."""

from webapp.auth.backend import SESSION_COOKIE_NAME, AuthFailure, SessionTokenBackend
from webapp.auth.models import AuthenticatedAccount
from webapp.auth.policy import optional_auth, protected_api, public_route, validate_route_auth_policy

__all__ = [
    "SESSION_COOKIE_NAME",
    "AuthFailure",
    "AuthenticatedAccount",
    "SessionTokenBackend",
    "optional_auth",
    "protected_api",
    "public_route",
    "validate_route_auth_policy",
]
