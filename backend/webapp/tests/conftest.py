"""Shared fixtures for web tests."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from starlette.testclient import TestClient

from accounts.auth.notifications import NotificationKind
from accounts.auth.settings import AuthSettings, MailSettings
from accounts.auth.tokens import TokenCodec
from webapp.server.app import create_app
from webapp.server.settings import AppSettings

if TYPE_CHECKING:
    from accounts.auth.notifications import Notification

# AuthSettings requires AUTH_SECRET_KEY. Set a test default before any AuthSettings is instantiated.
os.environ.setdefault("AUTH_SECRET_KEY", "test-secret-key")

TEST_SECRET = "test-secret-key"
CLIENT_URL = "http://client.test"


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[Notification] = []

    async def notify(self, notification: Notification) -> None:
        self.sent.append(notification)

    def last(self, kind: NotificationKind) -> Notification:
        matching = [n for n in self.sent if n.kind == kind]
        assert matching, f"no {kind} notification was sent"
        return matching[-1]


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def app_settings():
    return AppSettings(
        client_url=CLIENT_URL,
        api_url="http://testserver",
        cors_origins=[CLIENT_URL],
        avatar_storage_host="storage.example.com",
    )


@pytest.fixture
def app(tmp_path, notifier, app_settings):
    return create_app(
        settings=app_settings,
        auth_settings=AuthSettings(
            secret_key=TEST_SECRET,
            database_path=str(tmp_path / "test.db"),
            password_hasher="simple",
        ),
        mail_settings=MailSettings(backend="log"),
        notifier=notifier,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def codec():
    return TokenCodec(TEST_SECRET)


@pytest.fixture
def signed_in(client, notifier):
    """Sign up and confirm alice (a@x.com / Aa1!aaaa); the client holds her session cookie. Returns her id."""
    client.post("/auth/signup", json={"username": "alice", "email": "a@x.com", "password": "Aa1!aaaa"})
    token = notifier.last(NotificationKind.SIGNUP_CONFIRMATION).token
    response = client.get(f"/auth/verify-email/{token}")
    assert response.status_code == 200
    assert client.cookies.get("token")
    return client.get("/auth/check-email-validation", params={"email": "a@x.com"}).json()["userId"]
