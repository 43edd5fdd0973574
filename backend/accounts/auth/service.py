"""Auth service: the account lifecycle state machine.

An identity moves Anonymous -> PendingConfirmation -> Active. Active accounts
carry two independent latches: a requested password reset (password_reset_id)
and a requested email change (pending_email + email_change_id).

Every transition is a single atomic check-and-mutate in the credential store.
Single-use ids are matched and cleared by the store in the same operation, so
a replayed link loses against the first use.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from urllib.parse import urlparse
from uuid import uuid4

import structlog

from accounts.auth.errors import (
    AccountNotFound,
    AlreadyRegistered,
    DuplicateIdentity,
    EmailTaken,
    InvalidAvatar,
    InvalidCredentials,
    InvalidCurrentPassword,
    InvalidInput,
    InvalidOrUsed,
    LinkExpired,
    NoSuchPending,
    NoValidFields,
    PasswordMismatch,
    PasswordUnchanged,
    ResetLinkInvalid,
    SameEmail,
)
from accounts.auth.models import (
    EMAIL_PATTERN,
    USERNAME_MAX_LENGTH,
    USERNAME_MIN_LENGTH,
    USERNAME_PATTERN,
    Account,
    PendingRegistration,
    default_avatar_url,
)
from accounts.auth.notifications import Notification, NotificationKind
from accounts.auth.password import check_password_strength, hash_new_password
from accounts.auth.tokens import TokenError
from accounts.dal.credential_store import RecordNotFound

if TYPE_CHECKING:
    from collections.abc import Callable

    from accounts.auth.models import OptionalProfileUpdate, ProfileUpdate
    from accounts.auth.notifications import Notifier
    from accounts.auth.password import PasswordHasher
    from accounts.auth.tokens import TokenCodec
    from accounts.dal.credential_store import CredentialStore

logger = structlog.get_logger()

EMAIL_CHANGE_TTL = timedelta(hours=1)
EMAIL_MAX_LENGTH = 254


def utcnow() -> datetime:
    return datetime.now(UTC)


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass(frozen=True)
class SessionGrant:
    """An account together with a freshly issued session token."""

    account: Account
    token: str


class AuthService:
    """Coordinate signup, confirmation, login, and credential changes."""

    def __init__(
        self,
        store: CredentialStore,
        codec: TokenCodec,
        notifier: Notifier,
        *,
        password_hasher: PasswordHasher,
        avatar_storage_host: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._codec = codec
        self._notifier = notifier
        self._hasher = password_hasher
        self._avatar_storage_host = avatar_storage_host
        self._clock = clock

    # -- signup and confirmation --

    async def signup(self, username: str, email: str, password: str) -> PendingRegistration:
        """Create a pending registration and send the confirmation link."""
        username = username.strip()
        email = normalize_email(email)
        _validate_username(username)
        _validate_email(email)
        check_password_strength(password)

        account, pending = await self._store.find_identity(email, username)
        if account is not None or pending is not None:
            raise DuplicateIdentity

        pending = PendingRegistration(
            username=username,
            email=email,
            password_hash=await hash_new_password(self._hasher, password),
            confirmation_id=uuid4().hex,
            created_at=self._clock(),
        )
        await self._store.create_pending(pending)
        logger.info("pending registration created", username=username)

        token = self._codec.issue_action_token(email, pending.confirmation_id)
        await self._notify(Notification(NotificationKind.SIGNUP_CONFIRMATION, email, token))
        return pending

    async def verify_email(self, token: str) -> SessionGrant:
        """Promote the pending registration named by a confirmation token to an account.

        Raises TokenExpired/TokenInvalid for a bad token, NoSuchPending when
        no pending registration matches (email, confirmation id), and
        AlreadyRegistered when another account claimed the email meanwhile.
        """
        claims = self._codec.verify_action(token)

        pending = await self._store.get_pending(claims.email, claims.single_use_id)
        if pending is None:
            raise NoSuchPending

        now = self._clock()
        account = Account(
            account_id=str(uuid4()),
            username=pending.username,
            email=pending.email,
            password_hash=pending.password_hash,
            avatar_url=default_avatar_url(pending.username),
            created_at=now,
            updated_at=now,
        )
        try:
            created = await self._store.promote_pending(pending, account)
        except RecordNotFound as exc:
            raise NoSuchPending from exc

        if created is None:
            logger.info("pending registration discarded, email already registered")
            raise AlreadyRegistered

        logger.info("account created", account_id=created.account_id)
        await self._notify(Notification(NotificationKind.ACCOUNT_ACTIVATED, created.email))
        return SessionGrant(account=created, token=self._codec.issue_session_token(created.account_id))

    async def check_email_validation(self, email: str) -> Account | None:
        """Return the account for an email once its registration is confirmed."""
        email = normalize_email(email)
        if not email:
            raise InvalidInput("Email is required.")
        return await self._store.get_account_by_email(email)

    # -- sessions --

    async def login(self, email: str, password: str) -> SessionGrant:
        """Validate credentials and issue a session token.

        Unknown email and wrong password fail identically.
        """
        email = normalize_email(email)
        if not email or not password:
            raise InvalidInput("Email and password are required.")

        account = await self._store.get_account_by_email(email)
        if account is None or not await self._hasher.verify(password, account.password_hash):
            raise InvalidCredentials

        logger.info("login succeeded", account_id=account.account_id)
        return SessionGrant(account=account, token=self._codec.issue_session_token(account.account_id))

    async def authenticate_session(self, token: str) -> Account:
        """Resolve a session token to its account.

        Raises TokenExpired/TokenInvalid, or AccountNotFound when the account
        no longer exists.
        """
        claims = self._codec.verify_session(token)
        account = await self._store.get_account(claims.subject)
        if account is None:
            raise AccountNotFound
        return account

    async def get_account(self, account_id: str) -> Account:
        account = await self._store.get_account(account_id)
        if account is None:
            raise AccountNotFound
        return account

    # -- password reset --

    async def forgot_password(self, email: str) -> None:
        """Send a reset link if the account exists. Behaves identically when it does not."""
        email = normalize_email(email)
        if not email:
            raise InvalidInput("Email is required.")

        account = await self._store.get_account_by_email(email)
        if account is None:
            logger.info("password reset requested for unknown email")
            return

        reset_id = uuid4().hex
        await self._store.set_reset_id(account.account_id, reset_id, self._clock())
        logger.info("password reset requested", account_id=account.account_id)

        token = self._codec.issue_action_token(account.email, reset_id)
        await self._notify(Notification(NotificationKind.PASSWORD_RESET, account.email, token))

    async def reset_password(self, token: str, new_password: str) -> None:
        """Set a new password from a reset link. Every token failure raises ResetLinkInvalid."""
        if not token or not new_password:
            raise InvalidInput("Password and token are required.")

        try:
            claims = self._codec.verify_action(token)
        except TokenError as exc:
            raise ResetLinkInvalid from exc

        password_hash = await hash_new_password(self._hasher, new_password)
        account = await self._store.consume_reset_id(
            claims.email,
            claims.single_use_id,
            password_hash,
            self._clock(),
        )
        if account is None:
            raise ResetLinkInvalid

        logger.info("password reset completed", account_id=account.account_id)
        await self._notify(Notification(NotificationKind.PASSWORD_RESET_DONE, account.email))

    # -- authenticated credential changes --

    async def change_password(
        self,
        account_id: str,
        current_password: str,
        new_password: str,
        confirm_password: str,
    ) -> None:
        if not current_password or not new_password or not confirm_password:
            raise InvalidInput("Current password, new password and confirmation are required.")
        if new_password != confirm_password:
            raise PasswordMismatch

        account = await self.get_account(account_id)
        if not await self._hasher.verify(current_password, account.password_hash):
            raise InvalidCurrentPassword
        if await self._hasher.verify(new_password, account.password_hash):
            raise PasswordUnchanged

        password_hash = await hash_new_password(self._hasher, new_password)
        await self._store.set_password(account_id, password_hash, self._clock())
        logger.info("password changed", account_id=account_id)
        await self._notify(Notification(NotificationKind.PASSWORD_CHANGED, account.email))

    async def request_email_change(self, account_id: str, new_email: str) -> None:
        """Latch a pending email change and send the confirmation link to the new address."""
        new_email = normalize_email(new_email)
        _validate_email(new_email)

        account = await self.get_account(account_id)
        if account.email == new_email:
            raise SameEmail
        if await self._store.get_account_by_email(new_email) is not None:
            raise EmailTaken

        change_id = secrets.token_hex(32)
        now = self._clock()
        await self._store.set_pending_email_change(account_id, new_email, change_id, now + EMAIL_CHANGE_TTL, now)
        logger.info("email change requested", account_id=account_id)
        await self._notify(Notification(NotificationKind.EMAIL_CHANGE_CONFIRMATION, new_email, change_id))

    async def confirm_email_change(self, change_id: str) -> Account:
        """Apply a pending email change. Raises LinkExpired or InvalidOrUsed."""
        change_id = change_id.strip()
        if not change_id:
            raise InvalidOrUsed("Invalid link - token missing.")

        account = await self._store.apply_email_change(change_id, self._clock())
        if account is not None:
            logger.info("email change confirmed", account_id=account.account_id)
            return account

        if await self._store.get_account_by_email_change_id(change_id) is not None:
            raise LinkExpired
        raise InvalidOrUsed

    # -- profile --

    async def update_profile(self, account_id: str, update: ProfileUpdate) -> Account:
        """Apply the profile attributes present in the update, including a username change."""
        return await self._apply_profile(account_id, update)

    async def update_optional_data(self, account_id: str, update: OptionalProfileUpdate) -> Account:
        """Apply onboarding attributes for an account identified only by its id."""
        return await self._apply_profile(account_id, update)

    async def update_avatar(self, account_id: str, avatar_url: str) -> Account:
        """Point the avatar at an image on the storage host. Rejects every URL while no host is configured."""
        host = self._avatar_storage_host
        if not host:
            logger.warning("avatar update rejected, no storage host configured")
            raise InvalidAvatar("Avatar uploads are not available.")
        parsed = urlparse(avatar_url)
        if parsed.scheme not in {"http", "https"} or not parsed.hostname:
            raise InvalidAvatar
        if parsed.hostname != host and not parsed.hostname.endswith(f".{host}"):
            raise InvalidAvatar(f"Avatar must be hosted on {host}.")

        account = await self._store.set_avatar(account_id, avatar_url, self._clock())
        if account is None:
            raise AccountNotFound
        return account

    # -- private helpers --

    async def _apply_profile(self, account_id: str, update: OptionalProfileUpdate) -> Account:
        fields = update.changes()
        if not fields:
            raise NoValidFields
        account = await self._store.update_profile(account_id, fields, self._clock())
        if account is None:
            raise AccountNotFound
        logger.info("profile updated", account_id=account_id, fields=sorted(fields))
        return account

    async def _notify(self, notification: Notification) -> None:
        """Deliver a notification; failures are logged and never fail the transition."""
        try:
            await self._notifier.notify(notification)
        except Exception:  # noqa: BLE001
            logger.exception("notification delivery failed", kind=notification.kind)


def _validate_username(username: str) -> None:
    """Validate username: 3-30 chars, letters, digits, underscores and hyphens."""
    if len(username) < USERNAME_MIN_LENGTH or len(username) > USERNAME_MAX_LENGTH:
        raise InvalidInput(f"Username must be between {USERNAME_MIN_LENGTH} and {USERNAME_MAX_LENGTH} characters")
    if not USERNAME_PATTERN.match(username):
        raise InvalidInput("Username must contain only letters, numbers, hyphens and underscores")


def _validate_email(email: str) -> None:
    if len(email) > EMAIL_MAX_LENGTH or not EMAIL_PATTERN.match(email):
        raise InvalidInput("Invalid email format.")
