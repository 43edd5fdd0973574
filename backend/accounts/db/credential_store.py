"""SQLite-backed credential store."""

from __future__ import annotations

import asyncio
import sqlite3
from typing import TYPE_CHECKING, Any, TypeVar

import structlog
from anyio import to_thread

from accounts.auth.errors import DuplicateIdentity, EmailTaken, UsernameTaken
from accounts.auth.models import PROFILE_COLUMNS, Account, PendingRegistration
from accounts.dal.credential_store import CredentialStore, PurgeCounts, RecordNotFound
from accounts.db.connection import to_db_timestamp

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from accounts.db.connection import Database

logger = structlog.get_logger()

T = TypeVar("T")

_ACCOUNT_COLUMNS = (
    "id",
    "username",
    "email",
    "password_hash",
    "avatar_url",
    "gender",
    "age",
    "height",
    "height_unit",
    "current_weight",
    "current_weight_unit",
    "goal_weight",
    "goal_weight_unit",
    "password_reset_id",
    "pending_email",
    "email_change_id",
    "email_change_expires_at",
    "created_at",
    "updated_at",
)

_INSERT_ACCOUNT_SQL = (
    f"INSERT INTO accounts ({', '.join(_ACCOUNT_COLUMNS)}) "  # noqa: S608 - fixed column list
    f"VALUES ({', '.join(':' + c for c in _ACCOUNT_COLUMNS)})"
)


def _account_params(account: Account) -> dict[str, Any]:
    data = account.model_dump()
    data["id"] = data.pop("account_id")
    for key in ("created_at", "updated_at", "email_change_expires_at"):
        if data[key] is not None:
            data[key] = to_db_timestamp(data[key])
    return data


def _account_from_row(row: sqlite3.Row | None) -> Account | None:
    if row is None:
        return None
    data = dict(row)
    data["account_id"] = data.pop("id")
    return Account.model_validate(data)


def _pending_from_row(row: sqlite3.Row | None) -> PendingRegistration | None:
    if row is None:
        return None
    return PendingRegistration.model_validate(dict(row))


def _select_account(conn: sqlite3.Connection, account_id: str) -> Account | None:
    row = conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
    return _account_from_row(row)


class SqliteCredentialStore(CredentialStore):
    """SQLite implementation of CredentialStore.

    Every operation runs in a worker thread under an asyncio lock, so the
    event loop keeps serving requests during disk I/O and two operations
    never interleave on the shared connection. Multi-statement operations
    run inside one write transaction; unique indexes on email and username
    are the backstop for duplicate identities.
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        self._lock = asyncio.Lock()

    async def _run(self, operation: Callable[[], T]) -> T:
        async with self._lock:
            return await to_thread.run_sync(operation)

    async def find_identity(self, email: str, username: str) -> tuple[Account | None, PendingRegistration | None]:
        def _find() -> tuple[Account | None, PendingRegistration | None]:
            conn = self._db.connection
            account_row = conn.execute(
                "SELECT * FROM accounts WHERE email = ? OR username = ?",
                (email, username),
            ).fetchone()
            pending_row = conn.execute(
                "SELECT * FROM pending_registrations WHERE email = ? OR username = ?",
                (email, username),
            ).fetchone()
            return _account_from_row(account_row), _pending_from_row(pending_row)

        return await self._run(_find)

    async def create_pending(self, pending: PendingRegistration) -> None:
        """Insert a pending registration. Raises DuplicateIdentity on email or username collision."""

        def _create() -> None:
            with self._db.transaction() as conn:
                taken = conn.execute(
                    "SELECT 1 FROM accounts WHERE email = ? OR username = ?",
                    (pending.email, pending.username),
                ).fetchone()
                if taken is not None:
                    raise DuplicateIdentity
                try:
                    conn.execute(
                        "INSERT INTO pending_registrations "
                        "(email, username, password_hash, confirmation_id, created_at) VALUES (?, ?, ?, ?, ?)",
                        (
                            pending.email,
                            pending.username,
                            pending.password_hash,
                            pending.confirmation_id,
                            to_db_timestamp(pending.created_at),
                        ),
                    )
                except sqlite3.IntegrityError as exc:
                    raise DuplicateIdentity from exc

        await self._run(_create)

    async def get_pending(self, email: str, confirmation_id: str) -> PendingRegistration | None:
        def _get() -> PendingRegistration | None:
            row = self._db.connection.execute(
                "SELECT * FROM pending_registrations WHERE email = ? AND confirmation_id = ?",
                (email, confirmation_id),
            ).fetchone()
            return _pending_from_row(row)

        return await self._run(_get)

    async def promote_pending(self, pending: PendingRegistration, account: Account) -> Account | None:
        """Consume the pending registration and create the account atomically.

        Returns None when the email was claimed by another account since the
        signup; the stale pending row is deleted in that case too.
        """

        def _promote() -> Account | None:
            with self._db.transaction() as conn:
                deleted = conn.execute(
                    "DELETE FROM pending_registrations WHERE email = ? AND confirmation_id = ?",
                    (pending.email, pending.confirmation_id),
                )
                if deleted.rowcount == 0:
                    raise RecordNotFound(f"No pending registration for {pending.email!r}")

                claimed = conn.execute("SELECT 1 FROM accounts WHERE email = ?", (pending.email,)).fetchone()
                if claimed is not None:
                    return None

                try:
                    conn.execute(_INSERT_ACCOUNT_SQL, _account_params(account))
                except sqlite3.IntegrityError as exc:
                    raise DuplicateIdentity from exc
                return account

        return await self._run(_promote)

    async def get_account(self, account_id: str) -> Account | None:
        return await self._run(lambda: _select_account(self._db.connection, account_id))

    async def get_account_by_email(self, email: str) -> Account | None:
        def _get() -> Account | None:
            row = self._db.connection.execute("SELECT * FROM accounts WHERE email = ?", (email,)).fetchone()
            return _account_from_row(row)

        return await self._run(_get)

    async def get_account_by_email_change_id(self, change_id: str) -> Account | None:
        def _get() -> Account | None:
            row = self._db.connection.execute(
                "SELECT * FROM accounts WHERE email_change_id = ?",
                (change_id,),
            ).fetchone()
            return _account_from_row(row)

        return await self._run(_get)

    async def set_reset_id(self, account_id: str, reset_id: str, now: datetime) -> None:
        def _set() -> None:
            self._db.connection.execute(
                "UPDATE accounts SET password_reset_id = ?, updated_at = ? WHERE id = ?",
                (reset_id, to_db_timestamp(now), account_id),
            )

        await self._run(_set)

    async def consume_reset_id(
        self,
        email: str,
        reset_id: str,
        password_hash: str,
        now: datetime,
    ) -> Account | None:
        def _consume() -> Account | None:
            with self._db.transaction() as conn:
                row = conn.execute(
                    "SELECT id FROM accounts WHERE email = ? AND password_reset_id = ?",
                    (email, reset_id),
                ).fetchone()
                if row is None:
                    return None
                conn.execute(
                    "UPDATE accounts SET password_hash = ?, password_reset_id = NULL, updated_at = ? "
                    "WHERE id = ? AND password_reset_id = ?",
                    (password_hash, to_db_timestamp(now), row["id"], reset_id),
                )
                return _select_account(conn, row["id"])

        return await self._run(_consume)

    async def set_password(self, account_id: str, password_hash: str, now: datetime) -> Account | None:
        def _set() -> Account | None:
            with self._db.transaction() as conn:
                conn.execute(
                    "UPDATE accounts SET password_hash = ?, updated_at = ? WHERE id = ?",
                    (password_hash, to_db_timestamp(now), account_id),
                )
                return _select_account(conn, account_id)

        return await self._run(_set)

    async def set_pending_email_change(
        self,
        account_id: str,
        new_email: str,
        change_id: str,
        expires_at: datetime,
        now: datetime,
    ) -> Account | None:
        def _set() -> Account | None:
            with self._db.transaction() as conn:
                conn.execute(
                    "UPDATE accounts SET pending_email = ?, email_change_id = ?, email_change_expires_at = ?, "
                    "updated_at = ? WHERE id = ?",
                    (new_email, change_id, to_db_timestamp(expires_at), to_db_timestamp(now), account_id),
                )
                return _select_account(conn, account_id)

        return await self._run(_set)

    async def apply_email_change(self, change_id: str, now: datetime) -> Account | None:
        def _apply() -> Account | None:
            with self._db.transaction() as conn:
                row = conn.execute(
                    "SELECT id FROM accounts WHERE email_change_id = ? AND email_change_expires_at > ? "
                    "AND pending_email IS NOT NULL",
                    (change_id, to_db_timestamp(now)),
                ).fetchone()
                if row is None:
                    return None
                try:
                    conn.execute(
                        "UPDATE accounts SET email = pending_email, pending_email = NULL, email_change_id = NULL, "
                        "email_change_expires_at = NULL, updated_at = ? WHERE id = ?",
                        (to_db_timestamp(now), row["id"]),
                    )
                except sqlite3.IntegrityError as exc:
                    raise EmailTaken from exc
                return _select_account(conn, row["id"])

        return await self._run(_apply)

    async def update_profile(self, account_id: str, fields: dict[str, Any], now: datetime) -> Account | None:
        unknown = set(fields) - PROFILE_COLUMNS
        if unknown:
            raise ValueError(f"Not profile columns: {sorted(unknown)}")

        def _update() -> Account | None:
            with self._db.transaction() as conn:
                username = fields.get("username")
                if username is not None:
                    taken = conn.execute(
                        "SELECT 1 FROM accounts WHERE username = ? AND id != ? "
                        "UNION ALL SELECT 1 FROM pending_registrations WHERE username = ?",
                        (username, account_id, username),
                    ).fetchone()
                    if taken is not None:
                        raise UsernameTaken

                assignments = [f"{column} = :{column}" for column in sorted(fields)]
                set_clause = ", ".join([*assignments, "updated_at = :updated_at"])
                params = {**fields, "updated_at": to_db_timestamp(now), "account_id": account_id}
                # Column names come from PROFILE_COLUMNS, never from the client.
                sql = f"UPDATE accounts SET {set_clause} WHERE id = :account_id"  # noqa: S608
                try:
                    conn.execute(sql, params)
                except sqlite3.IntegrityError as exc:
                    raise UsernameTaken from exc
                return _select_account(conn, account_id)

        return await self._run(_update)

    async def set_avatar(self, account_id: str, avatar_url: str, now: datetime) -> Account | None:
        def _set() -> Account | None:
            with self._db.transaction() as conn:
                conn.execute(
                    "UPDATE accounts SET avatar_url = ?, updated_at = ? WHERE id = ?",
                    (avatar_url, to_db_timestamp(now), account_id),
                )
                return _select_account(conn, account_id)

        return await self._run(_set)

    async def purge_expired(
        self,
        pending_created_before: datetime,
        email_change_expired_before: datetime,
    ) -> PurgeCounts:
        def _purge() -> PurgeCounts:
            with self._db.transaction() as conn:
                pending = conn.execute(
                    "DELETE FROM pending_registrations WHERE created_at < ?",
                    (to_db_timestamp(pending_created_before),),
                )
                changes = conn.execute(
                    "UPDATE accounts SET pending_email = NULL, email_change_id = NULL, "
                    "email_change_expires_at = NULL WHERE email_change_expires_at < ?",
                    (to_db_timestamp(email_change_expired_before),),
                )
                return PurgeCounts(pending_registrations=pending.rowcount, email_changes=changes.rowcount)

        return await self._run(_purge)
