"""Account, pending registration, and profile update models."""

from __future__ import annotations

import re
from datetime import datetime  # noqa: TC003 - pydantic resolves field annotations at runtime
from typing import Annotated, Any, Literal
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 30
USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

DEFAULT_AVATAR_URL = "https://ui-avatars.com/api/?name={name}&background=random"

Gender = Literal["male", "female", "other"]
HeightUnit = Literal["cm", "inch"]
WeightUnit = Literal["Kg", "Lb"]

Username = Annotated[
    str,
    StringConstraints(
        strip_whitespace=True,
        min_length=USERNAME_MIN_LENGTH,
        max_length=USERNAME_MAX_LENGTH,
        pattern=USERNAME_PATTERN.pattern,
    ),
]
Age = Annotated[int, Field(ge=18, le=100)]
Height = Annotated[float, Field(ge=100, le=250)]
Weight = Annotated[float, Field(ge=30, le=300)]


def default_avatar_url(username: str) -> str:
    return DEFAULT_AVATAR_URL.format(name=quote(username, safe=""))


class PendingRegistration(BaseModel, frozen=True):
    """Signup awaiting email confirmation."""

    username: str
    email: str
    password_hash: str
    confirmation_id: str
    created_at: datetime


class AccountProfile(BaseModel, frozen=True):
    """Account attributes that are safe to hand to request handlers and clients."""

    account_id: str
    username: str
    email: str
    avatar_url: str | None = None

    gender: Gender | None = None
    age: int | None = None
    height: float | None = None
    height_unit: HeightUnit = "cm"
    current_weight: float | None = None
    current_weight_unit: WeightUnit = "Kg"
    goal_weight: float | None = None
    goal_weight_unit: WeightUnit = "Kg"
    pending_email: str | None = None

    created_at: datetime
    updated_at: datetime

    def public_view(self) -> dict[str, Any]:
        """Client-facing camelCase representation without the password hash or single-use ids."""
        data = self.model_dump(mode="json", exclude=_SECRET_FIELDS)
        return {_PUBLIC_KEYS.get(key, to_camel(key)): value for key, value in data.items()}


class Account(AccountProfile, frozen=True):
    """Confirmed user identity stored in the credential store."""

    password_hash: str
    password_reset_id: str | None = None
    email_change_id: str | None = None
    email_change_expires_at: datetime | None = None

    def profile(self) -> AccountProfile:
        """Copy of the account with the password hash and single-use ids stripped."""
        return AccountProfile.model_validate(self.model_dump(exclude=_SECRET_FIELDS))


_SECRET_FIELDS = {"password_hash", "password_reset_id", "email_change_id", "email_change_expires_at"}
_PUBLIC_KEYS = {"account_id": "id", "avatar_url": "avatar"}

# Columns that may be changed through profile updates.
PROFILE_COLUMNS = frozenset(
    {
        "username",
        "gender",
        "age",
        "height",
        "height_unit",
        "current_weight",
        "current_weight_unit",
        "goal_weight",
        "goal_weight_unit",
    },
)


class OptionalProfileUpdate(BaseModel):
    """Body-level profile attributes accepted during onboarding.

    Keys outside this schema are ignored. Only keys present in the request
    are applied; an explicit null clears the attribute.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    gender: Gender | None = None
    age: Age | None = None
    height: Height | None = None
    height_unit: HeightUnit = "cm"
    current_weight: Weight | None = None
    current_weight_unit: WeightUnit = "Kg"
    goal_weight: Weight | None = None
    goal_weight_unit: WeightUnit = "Kg"

    def changes(self) -> dict[str, Any]:
        """Return only the fields the client actually sent."""
        return self.model_dump(exclude_unset=True)


class ProfileUpdate(OptionalProfileUpdate):
    """Profile attributes an authenticated account may change, including its username."""

    username: Username | None = None

    def changes(self) -> dict[str, Any]:
        fields = super().changes()
        # A username can be renamed but never cleared.
        if fields.get("username", "") is None:
            del fields["username"]
        return fields
