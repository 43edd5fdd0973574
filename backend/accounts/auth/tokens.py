"""HMAC-SHA256 signed tokens for sessions and emailed action links.

Tokens are stateless: the server keeps no record of issued tokens. Action
tokens only prove that the bearer received a specific email; the single-use
id they carry must still match the id stored on the record.

Token format: base64url(json_payload_bytes).base64url(hmac_sha256_signature)
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import math
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable

logger = structlog.get_logger()

_TOKEN_PARTS = 2  # base64url(payload).base64url(signature)

ACTION_TOKEN_TTL_SECONDS = 15 * 60
SESSION_TOKEN_TTL_SECONDS = 7 * 24 * 60 * 60
CLOCK_SKEW_SECONDS = 60


class TokenPurpose(StrEnum):
    ACTION = "action"
    SESSION = "session"


_TTL_BY_PURPOSE = {
    TokenPurpose.ACTION: ACTION_TOKEN_TTL_SECONDS,
    TokenPurpose.SESSION: SESSION_TOKEN_TTL_SECONDS,
}


class TokenError(Exception):
    """Token could not be accepted."""


class TokenExpired(TokenError):
    """Signature is valid but the token is past its expiry."""


class TokenInvalid(TokenError):
    """Bad signature, bad shape, or a token issued for another purpose."""


@dataclass(frozen=True)
class ActionClaims:
    email: str
    single_use_id: str
    issued_at: float
    expires_at: float


@dataclass(frozen=True)
class SessionClaims:
    subject: str
    issued_at: float
    expires_at: float


def sign_token(payload: dict[str, Any], secret: str) -> str:
    """Serialize payload to JSON, compute HMAC-SHA256, return base64url(payload).base64url(sig)."""
    payload_bytes = json.dumps(payload, sort_keys=True).encode()
    sig = hmac.new(secret.encode(), payload_bytes, hashlib.sha256).digest()
    payload_b64 = base64.urlsafe_b64encode(payload_bytes).decode()
    sig_b64 = base64.urlsafe_b64encode(sig).decode()
    return f"{payload_b64}.{sig_b64}"


def decode_token(token: str, secret: str) -> dict[str, Any]:
    """Check the signature and return the decoded payload. Raises TokenInvalid."""
    parts = token.split(".")
    if len(parts) != _TOKEN_PARTS:
        raise TokenInvalid("malformed token")

    try:
        payload_bytes = base64.urlsafe_b64decode(parts[0])
        provided_sig = base64.urlsafe_b64decode(parts[1])
    except (ValueError, binascii.Error) as exc:
        raise TokenInvalid("malformed token encoding") from exc

    expected_sig = hmac.new(secret.encode(), payload_bytes, hashlib.sha256).digest()
    if not hmac.compare_digest(provided_sig, expected_sig):
        logger.debug("token signature mismatch")
        raise TokenInvalid("bad signature")

    try:
        data = json.loads(payload_bytes)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise TokenInvalid("malformed payload") from exc
    if not isinstance(data, dict):
        raise TokenInvalid("malformed payload")
    return data


def _is_finite_number(value: object) -> bool:
    """Check that a value is a finite int or float (excluding bool)."""
    if isinstance(value, bool):
        return False
    if not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _check_timestamps(data: dict[str, Any], purpose: TokenPurpose, now: float) -> tuple[float, float]:
    """Validate temporal claims and return (issued_at, expires_at).

    Rejects non-finite timestamps, tokens issued in the future (beyond clock
    skew), and lifetimes longer than the purpose allows. Expiry is checked
    last so that only an otherwise well-formed token reports TokenExpired.
    """
    issued_at = data.get("issued_at")
    expires_at = data.get("expires_at")
    if not _is_finite_number(issued_at) or not _is_finite_number(expires_at):
        raise TokenInvalid("non-finite timestamp")

    if issued_at > now + CLOCK_SKEW_SECONDS:
        raise TokenInvalid("issued in the future")
    if expires_at <= issued_at:
        raise TokenInvalid("expires_at <= issued_at")
    if expires_at - issued_at > _TTL_BY_PURPOSE[purpose] + CLOCK_SKEW_SECONDS:
        raise TokenInvalid("lifetime too long")
    if now > expires_at:
        raise TokenExpired("token expired")

    return float(issued_at), float(expires_at)


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise TokenInvalid(f"missing claim {key!r}")
    return value


class TokenCodec:
    """Issue and verify action and session tokens with a shared secret."""

    def __init__(self, secret: str, *, clock: Callable[[], float] = time.time) -> None:
        if not secret:
            raise ValueError("Token secret must not be empty")
        self._secret = secret
        self._clock = clock

    def issue_action_token(self, email: str, single_use_id: str) -> str:
        now = self._clock()
        return sign_token(
            {
                "purpose": TokenPurpose.ACTION.value,
                "email": email,
                "single_use_id": single_use_id,
                "issued_at": now,
                "expires_at": now + ACTION_TOKEN_TTL_SECONDS,
            },
            self._secret,
        )

    def issue_session_token(self, account_id: str) -> str:
        now = self._clock()
        return sign_token(
            {
                "purpose": TokenPurpose.SESSION.value,
                "sub": account_id,
                "issued_at": now,
                "expires_at": now + SESSION_TOKEN_TTL_SECONDS,
            },
            self._secret,
        )

    def verify_action(self, token: str) -> ActionClaims:
        data = self._verify(token, TokenPurpose.ACTION)
        issued_at, expires_at = _check_timestamps(data, TokenPurpose.ACTION, self._clock())
        return ActionClaims(
            email=_require_str(data, "email"),
            single_use_id=_require_str(data, "single_use_id"),
            issued_at=issued_at,
            expires_at=expires_at,
        )

    def verify_session(self, token: str) -> SessionClaims:
        data = self._verify(token, TokenPurpose.SESSION)
        issued_at, expires_at = _check_timestamps(data, TokenPurpose.SESSION, self._clock())
        return SessionClaims(subject=_require_str(data, "sub"), issued_at=issued_at, expires_at=expires_at)

    def _verify(self, token: str, purpose: TokenPurpose) -> dict[str, Any]:
        data = decode_token(token, self._secret)
        if data.get("purpose") != purpose.value:
            logger.debug("token purpose mismatch", expected=purpose)
            raise TokenInvalid("wrong token purpose")
        return data
