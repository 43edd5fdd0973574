"""Failure kinds raised by the account lifecycle transitions.

Each error carries the HTTP status and the client-facing message used at the
boundary. Several kinds share a message on purpose so that responses do not
reveal whether an account exists.
"""

from http import HTTPStatus

GENERIC_CREDENTIALS_MESSAGE = "Invalid email or password."
GENERIC_RESET_MESSAGE = "Invalid or expired authentication token."


class AuthError(Exception):
    """Base class for account lifecycle failures."""

    status_code: int = HTTPStatus.BAD_REQUEST
    default_message: str = "Request could not be processed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class InvalidInput(AuthError):
    default_message = "Invalid data."


class DuplicateIdentity(AuthError):
    default_message = (
        "The provided credentials are already in use. Choose different ones or check your inbox."
    )


class EmailTaken(AuthError):
    default_message = "This email is already in use."


class UsernameTaken(AuthError):
    default_message = "This username is already taken."


class SameEmail(AuthError):
    default_message = "The new email is identical to the current one."


class InvalidCredentials(AuthError):
    status_code = HTTPStatus.UNAUTHORIZED
    default_message = GENERIC_CREDENTIALS_MESSAGE


class InvalidCurrentPassword(AuthError):
    status_code = HTTPStatus.UNAUTHORIZED
    default_message = "Current password is incorrect."


class PasswordUnchanged(AuthError):
    default_message = "The new password must be different from the current one."


class PasswordMismatch(AuthError):
    default_message = "Passwords do not match."


class NoSuchPending(AuthError):
    default_message = "No pending registration matches this link."


class AlreadyRegistered(AuthError):
    default_message = "An account already exists for this email."


class ResetLinkInvalid(AuthError):
    default_message = GENERIC_RESET_MESSAGE


class LinkExpired(AuthError):
    default_message = "The confirmation link has expired. Please make a new request."


class InvalidOrUsed(AuthError):
    default_message = "Invalid or already used link."


class NoValidFields(AuthError):
    default_message = "No valid field to update."


class AccountNotFound(AuthError):
    status_code = HTTPStatus.NOT_FOUND
    default_message = "User not found."


class InvalidAvatar(AuthError):
    default_message = "Invalid avatar URL."
