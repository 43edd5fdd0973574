"""JSON request bodies and the helper that parses them."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from accounts.auth.errors import InvalidInput

if TYPE_CHECKING:
    from typing import Any

    from starlette.requests import Request


class RequestBody(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class SignupBody(RequestBody):
    username: str
    email: str
    password: str


class LoginBody(RequestBody):
    email: str
    password: str


class ForgotPasswordBody(RequestBody):
    email: str


class ResetPasswordBody(RequestBody):
    password: str
    token: str


class ChangePasswordBody(RequestBody):
    current_password: str
    new_password: str
    confirm_password: str


class EmailChangeBody(RequestBody):
    new_email: str


class AvatarBody(RequestBody):
    avatar: str


async def read_json_object(request: Request) -> dict[str, Any]:
    """Return the request body as a JSON object. Raises InvalidInput otherwise."""
    try:
        body = await request.json()
    except (ValueError, json.JSONDecodeError):
        raise InvalidInput("Invalid JSON body.") from None
    if not isinstance(body, dict):
        raise InvalidInput("Invalid JSON body.")
    return body


B = TypeVar("B", bound=BaseModel)


async def read_body(request: Request, model: type[B]) -> B:
    """Parse and validate the JSON body; pydantic ValidationError propagates to the 400 handler."""
    return model.model_validate(await read_json_object(request))
