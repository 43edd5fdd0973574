"""Tests for AuthService: the account lifecycle transitions."""

from __future__ import annotations

from datetime import timedelta

import pytest

from accounts.auth.errors import (
    GENERIC_CREDENTIALS_MESSAGE,
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
    UsernameTaken,
)
from accounts.auth.models import OptionalProfileUpdate, ProfileUpdate
from accounts.auth.notifications import NotificationKind
from accounts.auth.password import SimpleHasher
from accounts.auth.service import AuthService
from accounts.auth.tokens import TokenExpired, TokenInvalid

PASSWORD = "Aa1!aaaa"


async def _register(auth_service, notifier, username="alice", email="a@x.com", password=PASSWORD):
    """Sign up and confirm an account; return the session grant."""
    await auth_service.signup(username, email, password)
    token = notifier.last(NotificationKind.SIGNUP_CONFIRMATION).token
    return await auth_service.verify_email(token)


class TestSignup:
    async def test_creates_pending_registration_and_sends_link(self, auth_service, notifier, store):
        pending = await auth_service.signup("alice", "A@X.com ", PASSWORD)

        assert pending.email == "a@x.com"
        assert pending.password_hash != PASSWORD
        sent = notifier.last(NotificationKind.SIGNUP_CONFIRMATION)
        assert sent.recipient == "a@x.com"
        assert sent.token
        assert await store.get_pending("a@x.com", pending.confirmation_id) == pending

    async def test_hash_shaped_password_is_hashed_and_can_log_in(self, auth_service, notifier):
        password = "simple$Secret123"

        grant = await _register(auth_service, notifier, password=password)

        assert grant.account.password_hash != password
        assert (await auth_service.login("a@x.com", password)).account.account_id == grant.account.account_id

    async def test_second_signup_with_same_email_rejected(self, auth_service):
        await auth_service.signup("alice", "a@x.com", PASSWORD)

        with pytest.raises(DuplicateIdentity):
            await auth_service.signup("alice2", "a@x.com", PASSWORD)

    async def test_second_signup_with_same_username_rejected(self, auth_service):
        await auth_service.signup("alice", "a@x.com", PASSWORD)

        with pytest.raises(DuplicateIdentity):
            await auth_service.signup("ALICE", "b@x.com", PASSWORD)

    async def test_signup_colliding_with_confirmed_account_rejected(self, auth_service, notifier):
        await _register(auth_service, notifier)

        with pytest.raises(DuplicateIdentity):
            await auth_service.signup("bob", "a@x.com", PASSWORD)
        with pytest.raises(DuplicateIdentity):
            await auth_service.signup("alice", "b@x.com", PASSWORD)

    @pytest.mark.parametrize(
        ("username", "email", "password"),
        [
            ("al", "a@x.com", PASSWORD),
            ("a" * 31, "a@x.com", PASSWORD),
            ("alice!", "a@x.com", PASSWORD),
            ("alice", "not-an-email", PASSWORD),
            ("alice", "a@x.com", "weakpass"),
        ],
    )
    async def test_invalid_input_rejected(self, auth_service, notifier, username, email, password):
        with pytest.raises(InvalidInput):
            await auth_service.signup(username, email, password)
        assert notifier.sent == []

    async def test_mail_failure_does_not_fail_signup(self, store, codec, clock):
        class FailingNotifier:
            async def notify(self, notification):
                raise ConnectionError("mail relay unreachable")

        service = AuthService(store, codec, FailingNotifier(), password_hasher=SimpleHasher(), clock=clock)

        pending = await service.signup("alice", "a@x.com", PASSWORD)

        assert pending.username == "alice"


class TestVerifyEmail:
    async def test_promotes_pending_registration(self, auth_service, notifier, store, codec):
        grant = await _register(auth_service, notifier)

        assert grant.account.username == "alice"
        assert grant.account.email == "a@x.com"
        assert "ui-avatars.com" in grant.account.avatar_url
        assert codec.verify_session(grant.token).subject == grant.account.account_id
        assert await store.get_account_by_email("a@x.com") == grant.account
        account, pending = await store.find_identity("a@x.com", "alice")
        assert account is not None
        assert pending is None
        assert notifier.last(NotificationKind.ACCOUNT_ACTIVATED).recipient == "a@x.com"

    async def test_expired_token_creates_no_account(self, auth_service, notifier, store, clock):
        await auth_service.signup("alice", "a@x.com", PASSWORD)
        token = notifier.last(NotificationKind.SIGNUP_CONFIRMATION).token

        clock.advance(minutes=16)
        with pytest.raises(TokenExpired):
            await auth_service.verify_email(token)
        assert await store.get_account_by_email("a@x.com") is None

    async def test_tampered_token_rejected(self, auth_service, notifier):
        await auth_service.signup("alice", "a@x.com", PASSWORD)
        token = notifier.last(NotificationKind.SIGNUP_CONFIRMATION).token

        with pytest.raises(TokenInvalid):
            await auth_service.verify_email(token[:-4] + "AAA=")

    async def test_token_is_single_use(self, auth_service, notifier):
        await _register(auth_service, notifier)
        token = notifier.last(NotificationKind.SIGNUP_CONFIRMATION).token

        with pytest.raises(NoSuchPending):
            await auth_service.verify_email(token)

    async def test_old_token_does_not_match_newer_pending_registration(self, auth_service, notifier, store, clock):
        await auth_service.signup("alice", "a@x.com", PASSWORD)
        old_token = notifier.last(NotificationKind.SIGNUP_CONFIRMATION).token
        await store.purge_expired(
            pending_created_before=clock() + timedelta(seconds=1),
            email_change_expired_before=clock(),
        )
        await auth_service.signup("alice", "a@x.com", PASSWORD)

        with pytest.raises(NoSuchPending):
            await auth_service.verify_email(old_token)

    async def test_email_claimed_meanwhile_reports_already_registered(self, auth_service, notifier, store):
        await auth_service.signup("alice", "a@x.com", PASSWORD)
        pending_token = notifier.last(NotificationKind.SIGNUP_CONFIRMATION).token

        # Another account takes a@x.com through an email change before the confirmation.
        bob = await _register(auth_service, notifier, username="bob", email="b@x.com")
        await auth_service.request_email_change(bob.account.account_id, "a@x.com")
        change_id = notifier.last(NotificationKind.EMAIL_CHANGE_CONFIRMATION).token
        await auth_service.confirm_email_change(change_id)

        with pytest.raises(AlreadyRegistered):
            await auth_service.verify_email(pending_token)

        owner = await store.get_account_by_email("a@x.com")
        assert owner.account_id == bob.account.account_id
        account, pending = await store.find_identity("a@x.com", "alice")
        assert pending is None
        assert account.username == "bob"


class TestCheckEmailValidation:
    async def test_unconfirmed_email_is_not_validated(self, auth_service):
        await auth_service.signup("alice", "a@x.com", PASSWORD)

        assert await auth_service.check_email_validation("a@x.com") is None

    async def test_confirmed_email_returns_account(self, auth_service, notifier):
        grant = await _register(auth_service, notifier)

        account = await auth_service.check_email_validation(" A@x.com")

        assert account.account_id == grant.account.account_id

    async def test_email_required(self, auth_service):
        with pytest.raises(InvalidInput):
            await auth_service.check_email_validation("  ")


class TestLogin:
    async def test_issues_session_for_valid_credentials(self, auth_service, notifier, codec):
        registered = await _register(auth_service, notifier)

        grant = await auth_service.login("  A@X.COM ", PASSWORD)

        assert grant.account.account_id == registered.account.account_id
        assert codec.verify_session(grant.token).subject == registered.account.account_id

    async def test_wrong_password_and_unknown_email_fail_identically(self, auth_service, notifier):
        await _register(auth_service, notifier)

        with pytest.raises(InvalidCredentials) as wrong_password:
            await auth_service.login("a@x.com", "Wrong1pass")
        with pytest.raises(InvalidCredentials) as unknown_email:
            await auth_service.login("nobody@x.com", PASSWORD)

        assert wrong_password.value.message == unknown_email.value.message == GENERIC_CREDENTIALS_MESSAGE
        assert wrong_password.value.status_code == unknown_email.value.status_code == 401

    async def test_pending_registration_cannot_log_in(self, auth_service):
        await auth_service.signup("alice", "a@x.com", PASSWORD)

        with pytest.raises(InvalidCredentials):
            await auth_service.login("a@x.com", PASSWORD)

    async def test_missing_fields_rejected(self, auth_service):
        with pytest.raises(InvalidInput):
            await auth_service.login("", PASSWORD)


class TestAuthenticateSession:
    async def test_resolves_account(self, auth_service, notifier):
        grant = await _register(auth_service, notifier)

        account = await auth_service.authenticate_session(grant.token)

        assert account.account_id == grant.account.account_id

    async def test_expired_session_rejected(self, auth_service, notifier, clock):
        grant = await _register(auth_service, notifier)

        clock.advance(days=7, seconds=1)
        with pytest.raises(TokenExpired):
            await auth_service.authenticate_session(grant.token)

    async def test_unknown_account_rejected(self, auth_service, codec):
        with pytest.raises(AccountNotFound):
            await auth_service.authenticate_session(codec.issue_session_token("deleted-account"))


class TestForgotAndResetPassword:
    async def test_unknown_email_behaves_like_known_email(self, auth_service, notifier):
        await _register(auth_service, notifier)
        sent_before = len(notifier.sent)

        assert await auth_service.forgot_password("nobody@x.com") is None
        assert len(notifier.sent) == sent_before
        assert await auth_service.forgot_password("a@x.com") is None
        assert notifier.last(NotificationKind.PASSWORD_RESET).recipient == "a@x.com"

    async def test_reset_sets_new_password_and_clears_reset_id(self, auth_service, notifier, store):
        await _register(auth_service, notifier)
        await auth_service.forgot_password("a@x.com")
        token = notifier.last(NotificationKind.PASSWORD_RESET).token

        await auth_service.reset_password(token, "Bb2!bbbb")

        account = await store.get_account_by_email("a@x.com")
        assert account.password_reset_id is None
        await auth_service.login("a@x.com", "Bb2!bbbb")
        with pytest.raises(InvalidCredentials):
            await auth_service.login("a@x.com", PASSWORD)
        assert notifier.last(NotificationKind.PASSWORD_RESET_DONE).recipient == "a@x.com"

    async def test_reset_token_is_single_use(self, auth_service, notifier):
        await _register(auth_service, notifier)
        await auth_service.forgot_password("a@x.com")
        token = notifier.last(NotificationKind.PASSWORD_RESET).token
        await auth_service.reset_password(token, "Bb2!bbbb")

        with pytest.raises(ResetLinkInvalid):
            await auth_service.reset_password(token, "Cc3!cccc")

    async def test_newer_request_invalidates_older_link(self, auth_service, notifier):
        await _register(auth_service, notifier)
        await auth_service.forgot_password("a@x.com")
        first = notifier.last(NotificationKind.PASSWORD_RESET).token
        await auth_service.forgot_password("a@x.com")

        with pytest.raises(ResetLinkInvalid):
            await auth_service.reset_password(first, "Bb2!bbbb")

    async def test_expired_and_forged_tokens_share_one_message(self, auth_service, notifier, clock):
        await _register(auth_service, notifier)
        await auth_service.forgot_password("a@x.com")
        token = notifier.last(NotificationKind.PASSWORD_RESET).token

        with pytest.raises(ResetLinkInvalid) as forged:
            await auth_service.reset_password("forged.token", "Bb2!bbbb")
        clock.advance(minutes=16)
        with pytest.raises(ResetLinkInvalid) as expired:
            await auth_service.reset_password(token, "Bb2!bbbb")

        assert forged.value.message == expired.value.message

    async def test_weak_new_password_rejected(self, auth_service, notifier):
        await _register(auth_service, notifier)
        await auth_service.forgot_password("a@x.com")
        token = notifier.last(NotificationKind.PASSWORD_RESET).token

        with pytest.raises(InvalidInput):
            await auth_service.reset_password(token, "short")


class TestChangePassword:
    async def test_changes_password(self, auth_service, notifier):
        grant = await _register(auth_service, notifier)

        await auth_service.change_password(grant.account.account_id, PASSWORD, "Bb2!bbbb", "Bb2!bbbb")

        await auth_service.login("a@x.com", "Bb2!bbbb")
        assert notifier.last(NotificationKind.PASSWORD_CHANGED).recipient == "a@x.com"

    async def test_new_password_equal_to_current_rejected(self, auth_service, notifier):
        grant = await _register(auth_service, notifier)

        with pytest.raises(PasswordUnchanged):
            await auth_service.change_password(grant.account.account_id, PASSWORD, PASSWORD, PASSWORD)

    async def test_wrong_current_password_rejected(self, auth_service, notifier):
        grant = await _register(auth_service, notifier)

        with pytest.raises(InvalidCurrentPassword):
            await auth_service.change_password(grant.account.account_id, "Wrong1pass", "Bb2!bbbb", "Bb2!bbbb")

    async def test_confirmation_mismatch_rejected(self, auth_service, notifier):
        grant = await _register(auth_service, notifier)

        with pytest.raises(PasswordMismatch):
            await auth_service.change_password(grant.account.account_id, PASSWORD, "Bb2!bbbb", "Bb2!bbbc")


class TestEmailChange:
    async def test_request_and_confirm(self, auth_service, notifier, store):
        grant = await _register(auth_service, notifier)

        await auth_service.request_email_change(grant.account.account_id, "New@X.com")
        sent = notifier.last(NotificationKind.EMAIL_CHANGE_CONFIRMATION)
        assert sent.recipient == "new@x.com"

        account = await auth_service.confirm_email_change(sent.token)

        assert account.email == "new@x.com"
        assert account.pending_email is None
        assert account.email_change_id is None
        assert await store.get_account_by_email("a@x.com") is None

    async def test_same_email_rejected(self, auth_service, notifier):
        grant = await _register(auth_service, notifier)

        with pytest.raises(SameEmail):
            await auth_service.request_email_change(grant.account.account_id, "A@x.com")

    async def test_email_owned_by_another_account_rejected(self, auth_service, notifier):
        alice = await _register(auth_service, notifier)
        await _register(auth_service, notifier, username="bob", email="b@x.com")

        with pytest.raises(EmailTaken):
            await auth_service.request_email_change(alice.account.account_id, "b@x.com")

    async def test_expired_link_reported_distinctly(self, auth_service, notifier, clock):
        grant = await _register(auth_service, notifier)
        await auth_service.request_email_change(grant.account.account_id, "new@x.com")
        change_id = notifier.last(NotificationKind.EMAIL_CHANGE_CONFIRMATION).token

        clock.advance(hours=1, seconds=1)
        with pytest.raises(LinkExpired):
            await auth_service.confirm_email_change(change_id)

    async def test_used_link_reported_as_invalid_or_used(self, auth_service, notifier):
        grant = await _register(auth_service, notifier)
        await auth_service.request_email_change(grant.account.account_id, "new@x.com")
        change_id = notifier.last(NotificationKind.EMAIL_CHANGE_CONFIRMATION).token
        await auth_service.confirm_email_change(change_id)

        with pytest.raises(InvalidOrUsed):
            await auth_service.confirm_email_change(change_id)

    async def test_unknown_or_missing_link_rejected(self, auth_service):
        with pytest.raises(InvalidOrUsed):
            await auth_service.confirm_email_change("does-not-exist")
        with pytest.raises(InvalidOrUsed, match="missing"):
            await auth_service.confirm_email_change("")

    async def test_target_claimed_before_confirmation(self, auth_service, notifier):
        alice = await _register(auth_service, notifier)
        await auth_service.request_email_change(alice.account.account_id, "c@x.com")
        change_id = notifier.last(NotificationKind.EMAIL_CHANGE_CONFIRMATION).token
        await _register(auth_service, notifier, username="carol", email="c@x.com")

        with pytest.raises(EmailTaken):
            await auth_service.confirm_email_change(change_id)


class TestProfile:
    async def test_updates_only_sent_fields(self, auth_service, notifier):
        grant = await _register(auth_service, notifier)

        account = await auth_service.update_profile(
            grant.account.account_id,
            ProfileUpdate.model_validate({"age": 30, "currentWeight": 80.5}),
        )

        assert account.age == 30
        assert account.current_weight == 80.5
        assert account.height is None
        assert account.username == "alice"

    async def test_renames_account(self, auth_service, notifier):
        grant = await _register(auth_service, notifier)

        account = await auth_service.update_profile(grant.account.account_id, ProfileUpdate(username="alicia"))

        assert account.username == "alicia"

    async def test_username_of_another_account_rejected(self, auth_service, notifier):
        alice = await _register(auth_service, notifier)
        await _register(auth_service, notifier, username="bob", email="b@x.com")

        with pytest.raises(UsernameTaken):
            await auth_service.update_profile(alice.account.account_id, ProfileUpdate(username="Bob"))

    async def test_username_of_pending_registration_rejected(self, auth_service, notifier):
        alice = await _register(auth_service, notifier)
        await auth_service.signup("bob", "b@x.com", PASSWORD)

        with pytest.raises(UsernameTaken):
            await auth_service.update_profile(alice.account.account_id, ProfileUpdate(username="bob"))

    async def test_keeping_own_username_is_allowed(self, auth_service, notifier):
        alice = await _register(auth_service, notifier)

        account = await auth_service.update_profile(alice.account.account_id, ProfileUpdate(username="alice", age=40))

        assert account.age == 40

    async def test_no_fields_rejected(self, auth_service, notifier):
        grant = await _register(auth_service, notifier)

        with pytest.raises(NoValidFields):
            await auth_service.update_profile(
                grant.account.account_id,
                ProfileUpdate.model_validate({"role": "admin"}),
            )

    async def test_optional_data_for_unknown_account(self, auth_service):
        with pytest.raises(AccountNotFound):
            await auth_service.update_optional_data("missing", OptionalProfileUpdate(gender="female"))

    async def test_optional_data_ignores_username(self, auth_service, notifier):
        grant = await _register(auth_service, notifier)

        account = await auth_service.update_optional_data(
            grant.account.account_id,
            OptionalProfileUpdate.model_validate({"username": "mallory", "gender": "female", "heightUnit": "inch"}),
        )

        assert account.username == "alice"
        assert account.gender == "female"
        assert account.height_unit == "inch"


class TestAvatar:
    async def test_accepts_url_on_storage_host(self, auth_service, notifier):
        grant = await _register(auth_service, notifier)
        url = "https://cdn.storage.example.com/avatars/alice.png"

        account = await auth_service.update_avatar(grant.account.account_id, url)

        assert account.avatar_url == url

    @pytest.mark.parametrize(
        "url",
        [
            "not a url",
            "ftp://storage.example.com/a.png",
            "https://evil.example.org/a.png",
            "https://evilstorage.example.com/a.png",
        ],
    )
    async def test_rejects_other_urls(self, auth_service, notifier, url):
        grant = await _register(auth_service, notifier)

        with pytest.raises(InvalidAvatar):
            await auth_service.update_avatar(grant.account.account_id, url)

    async def test_rejects_everything_without_storage_host(self, store, codec, notifier, clock):
        service = AuthService(store, codec, notifier, password_hasher=SimpleHasher(), clock=clock)
        grant = await _register(service, notifier)

        with pytest.raises(InvalidAvatar, match="not available"):
            await service.update_avatar(grant.account.account_id, "https://evil.example/x.png")
        assert (await store.get_account(grant.account.account_id)).avatar_url == grant.account.avatar_url
