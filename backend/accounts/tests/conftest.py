"""Shared fixtures for accounts tests: database, fakes for mail and time, and a wired AuthService."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from accounts.auth.password import SimpleHasher
from accounts.auth.service import AuthService
from accounts.auth.tokens import TokenCodec
from accounts.db import Database, SqliteCredentialStore

if TYPE_CHECKING:
    from pathlib import Path

    from accounts.auth.notifications import Notification, NotificationKind

TEST_SECRET = "test-secret-key"


class FakeClock:
    """Controllable time source shared by the service (datetime) and the token codec (epoch seconds)."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def timestamp(self) -> float:
        return self.now.timestamp()

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingNotifier:
    """Collects notifications instead of sending them."""

    def __init__(self) -> None:
        self.sent: list[Notification] = []

    async def notify(self, notification: Notification) -> None:
        self.sent.append(notification)

    def last(self, kind: NotificationKind) -> Notification:
        matching = [n for n in self.sent if n.kind == kind]
        assert matching, f"no {kind} notification was sent"
        return matching[-1]


class FailingNotifier:
    async def notify(self, notification: Notification) -> None:
        raise ConnectionError("mail relay unreachable")


@pytest.fixture
def db(tmp_path: Path):
    database = Database(tmp_path / "test.db")
    database.connect()
    yield database
    database.close()


@pytest.fixture
def store(db):
    return SqliteCredentialStore(db)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def codec(clock):
    return TokenCodec(TEST_SECRET, clock=clock.timestamp)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def auth_service(store, codec, notifier, clock):
    return AuthService(
        store,
        codec,
        notifier,
        password_hasher=SimpleHasher(),
        avatar_storage_host="storage.example.com",
        clock=clock,
    )
