"""Profile endpoints: attribute updates, password and email changes, avatar."""

from __future__ import annotations

from typing import TYPE_CHECKING

from starlette.responses import JSONResponse, Response

from accounts.auth.errors import InvalidInput
from accounts.auth.models import OptionalProfileUpdate, ProfileUpdate
from webapp.views.bodies import AvatarBody, ChangePasswordBody, EmailChangeBody, read_body, read_json_object

if TYPE_CHECKING:
    from starlette.requests import Request

    from accounts.auth.models import Account
    from accounts.auth.service import AuthService


def _profile_response(account: Account, message: str) -> JSONResponse:
    return JSONResponse({"success": True, "message": message, "user": account.public_view()})


def _user_id_from(body: dict) -> str:
    user_id = body.get("userId")
    if not isinstance(user_id, str) or not user_id.strip():
        raise InvalidInput("Invalid user ID.")
    return user_id.strip()


async def update_profile(request: Request) -> Response:
    """PUT /auth/profile - change the signed-in account's profile attributes."""
    auth_service: AuthService = request.app.state.auth_service
    update = await read_body(request, ProfileUpdate)
    account = await auth_service.update_profile(request.user.account_id, update)
    return _profile_response(account, "Profile updated successfully.")


async def update_optional(request: Request) -> Response:
    """POST /auth/update-optional {userId, ...} - onboarding update addressed by account id."""
    auth_service: AuthService = request.app.state.auth_service
    body = await read_json_object(request)
    account_id = _user_id_from(body)
    account = await auth_service.update_optional_data(account_id, OptionalProfileUpdate.model_validate(body))
    return _profile_response(account, "Profile updated.")


async def update_optional_enhanced(request: Request) -> Response:
    """POST /auth/update-optional-enhanced - as update-optional, preferring the session account."""
    auth_service: AuthService = request.app.state.auth_service
    body = await read_json_object(request)
    account_id = request.user.account_id if request.user.is_authenticated else _user_id_from(body)
    account = await auth_service.update_optional_data(account_id, OptionalProfileUpdate.model_validate(body))
    return _profile_response(account, "Profile updated.")


async def change_password(request: Request) -> Response:
    """POST /auth/change-password {currentPassword, newPassword, confirmPassword}."""
    auth_service: AuthService = request.app.state.auth_service
    body = await read_body(request, ChangePasswordBody)
    await auth_service.change_password(
        request.user.account_id,
        body.current_password,
        body.new_password,
        body.confirm_password,
    )
    return JSONResponse({"success": True, "message": "Password updated successfully."})


async def request_email_change(request: Request) -> Response:
    """POST /auth/request-email-change {newEmail} - send a confirmation link to the new address."""
    auth_service: AuthService = request.app.state.auth_service
    body = await read_body(request, EmailChangeBody)
    await auth_service.request_email_change(request.user.account_id, body.new_email)
    return JSONResponse({"success": True, "message": "Confirmation email sent."})


async def confirm_email_change(request: Request) -> Response:
    """GET /auth/confirm-email-change?token= - apply a pending email change."""
    auth_service: AuthService = request.app.state.auth_service
    account = await auth_service.confirm_email_change(request.query_params.get("token", ""))
    return JSONResponse(
        {
            "success": True,
            "message": "Email updated successfully!",
            "user": {"id": account.account_id, "email": account.email},
        },
    )


async def update_avatar(request: Request) -> Response:
    """PATCH /auth/avatar {avatar} - point the avatar at an uploaded image."""
    auth_service: AuthService = request.app.state.auth_service
    body = await read_body(request, AvatarBody)
    account = await auth_service.update_avatar(request.user.account_id, body.avatar)
    return JSONResponse(account.public_view())
