"""Route auth policy helpers for fail-closed authorization.

Each helper wraps a route endpoint and sets the ``AUTH_POLICY_ATTR`` marker
so that startup validation can verify every route has an explicit auth policy.
"""

from __future__ import annotations

import functools
import inspect
from typing import TYPE_CHECKING

from starlette.authentication import has_required_scope
from starlette.responses import JSONResponse
from starlette.routing import Route

from webapp.auth.backend import AuthFailure

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from typing import Any

    from starlette.requests import Request
    from starlette.responses import Response
    from starlette.routing import BaseRoute

AUTH_POLICY_ATTR = "__auth_policy__"

UNAUTHORIZED_MESSAGES = {
    AuthFailure.MISSING: "Unauthorized - no token provided.",
    AuthFailure.EXPIRED: "Unauthorized - token expired.",
    AuthFailure.INVALID: "Unauthorized - invalid token.",
    AuthFailure.UNKNOWN_ACCOUNT: "Unauthorized - user not found.",
}


def unauthorized_response(request: Request) -> JSONResponse:
    """401 body naming why the session was rejected."""
    reason = getattr(request.state, "auth_failure", AuthFailure.MISSING)
    message = UNAUTHORIZED_MESSAGES.get(reason, UNAUTHORIZED_MESSAGES[AuthFailure.MISSING])
    return JSONResponse({"success": False, "message": message}, status_code=401)


def _async_endpoint(endpoint: Callable[..., Any]) -> Callable[..., Awaitable[Response]]:
    if not inspect.iscoroutinefunction(endpoint):
        msg = f"Endpoint {endpoint.__name__} must be an async function"
        raise TypeError(msg)
    return endpoint


def protected_api(endpoint: Callable[..., Any]) -> Callable[..., Any]:
    """Require a valid session; answer 401 JSON otherwise."""
    endpoint = _async_endpoint(endpoint)

    @functools.wraps(endpoint)
    async def wrapper(request: Request, **kwargs: str) -> Response:
        if not has_required_scope(request, ["authenticated"]):
            return unauthorized_response(request)
        return await endpoint(request, **kwargs)

    setattr(wrapper, AUTH_POLICY_ATTR, "protected_api")
    return wrapper


def optional_auth(endpoint: Callable[..., Any]) -> Callable[..., Any]:
    """Run the endpoint for guests and signed-in accounts alike.

    ``request.user.is_authenticated`` tells the two apart; a bad cookie is
    treated as no cookie.
    """
    endpoint = _async_endpoint(endpoint)

    @functools.wraps(endpoint)
    async def wrapper(request: Request, **kwargs: str) -> Response:
        return await endpoint(request, **kwargs)

    setattr(wrapper, AUTH_POLICY_ATTR, "optional")
    return wrapper


def public_route(endpoint: Callable[..., Any]) -> Callable[..., Any]:
    """Mark endpoint as explicitly public (no auth required).

    Returns a thin wrapper so the marker lives on the wrapper, not on the
    original callable, and cannot leak to another route reusing the function.
    """
    endpoint = _async_endpoint(endpoint)

    @functools.wraps(endpoint)
    async def wrapper(request: Request, **kwargs: str) -> Response:
        return await endpoint(request, **kwargs)

    setattr(wrapper, AUTH_POLICY_ATTR, "public")
    return wrapper


def validate_route_auth_policy(routes: list[BaseRoute]) -> None:
    """Verify every Route has an auth policy marker. Mount routes are exempt.

    Raises RuntimeError listing all unclassified routes if any are found.
    """
    unclassified = [
        f"{route.path} ({route.name or getattr(route.endpoint, '__name__', 'unknown')})"
        for route in routes
        if isinstance(route, Route) and not hasattr(route.endpoint, AUTH_POLICY_ATTR)
    ]
    if unclassified:
        msg = f"Unclassified routes missing auth policy: {', '.join(unclassified)}"
        raise RuntimeError(msg)
