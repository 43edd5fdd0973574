"""Abstract interface for account and pending-registration persistence."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from datetime import datetime

    from accounts.auth.models import Account, PendingRegistration


class RecordNotFound(LookupError):
    """The record an atomic operation expected was no longer there."""


@dataclass(frozen=True)
class PurgeCounts:
    pending_registrations: int
    email_changes: int


class CredentialStore(ABC):
    """Abstract interface for credential persistence.

    Every mutating method is one atomic check-and-mutate against the backing
    store. Methods keyed by a single-use id only touch the record while that
    id is still present, so concurrent uses of the same id cannot both win.
    """

    @abstractmethod
    async def find_identity(self, email: str, username: str) -> tuple[Account | None, PendingRegistration | None]:
        """Return the account and pending registration holding this email or username."""

    @abstractmethod
    async def create_pending(self, pending: PendingRegistration) -> None:
        """Insert a pending registration. Raises DuplicateIdentity on any email/username collision."""

    @abstractmethod
    async def get_pending(self, email: str, confirmation_id: str) -> PendingRegistration | None: ...

    @abstractmethod
    async def promote_pending(self, pending: PendingRegistration, account: Account) -> Account | None:
        """Delete the pending registration and insert the account in one transaction.

        Returns None (the pending row is still deleted) when an account already
        owns the email. Raises RecordNotFound when the pending row is gone.
        """

    @abstractmethod
    async def get_account(self, account_id: str) -> Account | None: ...

    @abstractmethod
    async def get_account_by_email(self, email: str) -> Account | None: ...

    @abstractmethod
    async def get_account_by_email_change_id(self, change_id: str) -> Account | None: ...

    @abstractmethod
    async def set_reset_id(self, account_id: str, reset_id: str, now: datetime) -> None: ...

    @abstractmethod
    async def consume_reset_id(
        self,
        email: str,
        reset_id: str,
        password_hash: str,
        now: datetime,
    ) -> Account | None:
        """Set the password and clear the reset id, only if (email, reset_id) still match."""

    @abstractmethod
    async def set_password(self, account_id: str, password_hash: str, now: datetime) -> Account | None: ...

    @abstractmethod
    async def set_pending_email_change(
        self,
        account_id: str,
        new_email: str,
        change_id: str,
        expires_at: datetime,
        now: datetime,
    ) -> Account | None: ...

    @abstractmethod
    async def apply_email_change(self, change_id: str, now: datetime) -> Account | None:
        """Move the pending email into place for an unexpired change id. Raises EmailTaken."""

    @abstractmethod
    async def update_profile(self, account_id: str, fields: dict[str, Any], now: datetime) -> Account | None:
        """Apply profile columns. Raises UsernameTaken when another account holds the username."""

    @abstractmethod
    async def set_avatar(self, account_id: str, avatar_url: str, now: datetime) -> Account | None: ...

    @abstractmethod
    async def purge_expired(
        self,
        pending_created_before: datetime,
        email_change_expired_before: datetime,
    ) -> PurgeCounts:
        """Delete stale pending registrations and clear long-expired email change requests."""
