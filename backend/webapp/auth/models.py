"""Request user model for Starlette AuthenticationMiddleware integration."""

from __future__ import annotations

from typing import TYPE_CHECKING

from starlette.authentication import BaseUser

if TYPE_CHECKING:
    from accounts.auth.models import AccountProfile


class AuthenticatedAccount(BaseUser):
    """The account behind a valid session cookie, exposed as ``request.user``.

    Holds the profile only; handlers needing the password hash reload the
    account through the auth service.
    """

    def __init__(self, account: AccountProfile) -> None:
        self._account = account

    @property
    def is_authenticated(self) -> bool:
        return True

    @property
    def display_name(self) -> str:  # pragma: no cover
        return self._account.username

    @property
    def identity(self) -> str:
        return self._account.account_id

    @property
    def account(self) -> AccountProfile:
        return self._account

    @property
    def account_id(self) -> str:
        return self._account.account_id
