"""Password hashing: protocol, bcrypt (production), and simple SHA-256 (tests).

BcryptHasher is CPU-bound and runs off the event loop using
anyio.to_thread.run_sync() to avoid blocking under concurrent requests.

SimpleHasher uses SHA-256 with a "simple$" prefix for instant hashing.
It is intended for tests only.
"""

from __future__ import annotations

import hashlib
import hmac
import re
from typing import Protocol, runtime_checkable

import bcrypt
from anyio import to_thread

from accounts.auth.errors import InvalidInput

BCRYPT_ROUNDS = 10

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_BYTES = 72  # bcrypt truncates at 72 bytes
_PASSWORD_CHARACTER_CLASSES = (
    (re.compile(r"[a-z]"), "one lowercase letter"),
    (re.compile(r"[A-Z]"), "one uppercase letter"),
    (re.compile(r"\d"), "one digit"),
)


@runtime_checkable
class PasswordHasher(Protocol):
    """Hash and verify passwords."""

    async def hash(self, plain: str) -> str: ...

    async def verify(self, plain: str, hashed: str) -> bool: ...


class BcryptHasher:
    """Production hasher using bcrypt (async, off-thread)."""

    def __init__(self, rounds: int = BCRYPT_ROUNDS) -> None:
        self._rounds = rounds

    async def hash(self, plain: str) -> str:
        encoded = plain.encode("utf-8")
        salt = bcrypt.gensalt(rounds=self._rounds)
        return await to_thread.run_sync(lambda: bcrypt.hashpw(encoded, salt).decode("utf-8"))

    async def verify(self, plain: str, hashed: str) -> bool:
        """Return False for malformed hashes rather than propagating a ValueError."""
        encoded_plain = plain.encode("utf-8")
        encoded_hash = hashed.encode("utf-8")
        try:
            return await to_thread.run_sync(lambda: bcrypt.checkpw(encoded_plain, encoded_hash))
        except ValueError:
            return False


_SIMPLE_PREFIX = "simple$"


class SimpleHasher:
    """Fast SHA-256 hasher for tests. Not suitable for production use."""

    async def hash(self, plain: str) -> str:
        return _SIMPLE_PREFIX + hashlib.sha256(plain.encode("utf-8")).hexdigest()

    async def verify(self, plain: str, hashed: str) -> bool:
        if not hashed.startswith(_SIMPLE_PREFIX):
            return False
        expected = _SIMPLE_PREFIX + hashlib.sha256(plain.encode("utf-8")).hexdigest()
        return hmac.compare_digest(hashed, expected)


def get_hasher(name: str = "bcrypt") -> PasswordHasher:
    """Return a PasswordHasher by name ("bcrypt" or "simple")."""
    if name == "bcrypt":
        return BcryptHasher()
    if name == "simple":
        return SimpleHasher()
    raise ValueError(f"Unknown password hasher: {name!r}")


def check_password_strength(password: str) -> None:
    """Raise InvalidInput unless the plaintext meets the password policy.

    8+ characters, at most 72 UTF-8 bytes (bcrypt limit), and at least one
    lowercase letter, one uppercase letter and one digit.
    """
    if len(password) < PASSWORD_MIN_LENGTH:
        raise InvalidInput(f"Password must contain at least {PASSWORD_MIN_LENGTH} characters")
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise InvalidInput(f"Password must not exceed {PASSWORD_MAX_BYTES} bytes when encoded")
    missing = [label for pattern, label in _PASSWORD_CHARACTER_CLASSES if not pattern.search(password)]
    if missing:
        raise InvalidInput(f"Password must contain at least {', '.join(missing)}")


async def hash_new_password(hasher: PasswordHasher, plain: str) -> str:
    """Check a client-supplied password against the policy and hash it.

    Input is always treated as plaintext, whatever it looks like.
    """
    check_password_strength(plain)
    return await hasher.hash(plain)
