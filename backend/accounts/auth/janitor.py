"""Periodic cleanup of pending state that can no longer be completed."""

from __future__ import annotations

import asyncio
import contextlib
from datetime import timedelta
from typing import TYPE_CHECKING

import structlog

from accounts.auth.tokens import ACTION_TOKEN_TTL_SECONDS

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from accounts.dal.credential_store import CredentialStore, PurgeCounts

CLEANUP_INTERVAL_SECONDS = 300  # 5 minutes

# A pending registration is useless once its confirmation token has expired.
PENDING_REGISTRATION_TTL = timedelta(seconds=ACTION_TOKEN_TTL_SECONDS)
# Expired email changes are kept for a day so the link reports "expired" rather than "invalid".
EMAIL_CHANGE_PURGE_GRACE = timedelta(days=1)

logger = structlog.get_logger()


class ExpiryJanitor:
    """Remove stale pending registrations and long-expired email change requests.

    Stale pending registrations would otherwise block a new signup with the
    same email or username forever. Call start() on app startup and stop()
    on shutdown.
    """

    def __init__(
        self,
        store: CredentialStore,
        *,
        clock: Callable[[], datetime],
        interval_seconds: float = CLEANUP_INTERVAL_SECONDS,
    ) -> None:
        self._store = store
        self._clock = clock
        self._interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None

    async def purge_once(self) -> PurgeCounts:
        now = self._clock()
        counts = await self._store.purge_expired(
            pending_created_before=now - PENDING_REGISTRATION_TTL,
            email_change_expired_before=now - EMAIL_CHANGE_PURGE_GRACE,
        )
        if counts.pending_registrations or counts.email_changes:
            logger.info(
                "purged expired records",
                pending_registrations=counts.pending_registrations,
                email_changes=counts.email_changes,
            )
        return counts

    def start(self) -> None:
        """Start the periodic cleanup background task."""
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Stop the periodic cleanup background task."""
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval_seconds)
            try:
                await self.purge_once()
            except Exception:  # noqa: BLE001
                logger.exception("expiry cleanup failed")
