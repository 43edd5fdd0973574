"""Account lifecycle: tokens, password hashing, notifications, and the auth service."""

from accounts.auth.errors import AuthError
from accounts.auth.janitor import ExpiryJanitor
from accounts.auth.models import Account, AccountProfile, OptionalProfileUpdate, PendingRegistration, ProfileUpdate
from accounts.auth.notifications import LinkBuilder, Notification, NotificationKind, Notifier, get_notifier
from accounts.auth.password import get_hasher, hash_new_password
from accounts.auth.service import AuthService, SessionGrant
from accounts.auth.settings import AuthSettings, MailSettings
from accounts.auth.tokens import TokenCodec, TokenError, TokenExpired, TokenInvalid

__all__ = [
    "Account",
    "AccountProfile",
    "AuthError",
    "AuthService",
    "AuthSettings",
    "ExpiryJanitor",
    "LinkBuilder",
    "MailSettings",
    "Notification",
    "NotificationKind",
    "Notifier",
    "OptionalProfileUpdate",
    "PendingRegistration",
    "ProfileUpdate",
    "SessionGrant",
    "TokenCodec",
    "TokenError",
    "TokenExpired",
    "TokenInvalid",
    "get_hasher",
    "get_notifier",
    "hash_new_password",
]
