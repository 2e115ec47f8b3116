"""Sync orchestrator — the only entry point the presentation layer uses.

Responsibilities:
1. Lazy remote client — built from the current identity, discarded on logout
2. Write-through — remote first (best effort), local cache always
3. Read-through — unsynced edit pushed first, then remote read refreshes the cache;
   cache fallback only when the remote store is unreachable
4. Pending-sync tracking — collections saved locally but not yet on the remote store
5. One-time legacy migration when a client is first built
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from marginalia.config import SyncConfig
from marginalia.errors import MarginaliaError, RateLimitError, RemoteUnavailableError, ValidationError
from marginalia.notes.keys import get_storage_key
from marginalia.notes.types import Note, NoteScope, UrlContext, notes_from_wire, notes_to_wire
from marginalia.sync.client import NotesCallback, RemoteSyncClient
from marginalia.sync.migration import LegacyMigrator

if TYPE_CHECKING:
    from marginalia.identity import IdentityResolver
    from marginalia.storage.base import DocumentStore, Unsubscribe
    from marginalia.storage.cache import LocalCache

logger = logging.getLogger(__name__)


class SyncStatus(str, Enum):
    SYNCED = "synced"
    PENDING = "pending"  # saved locally, remote write failed
    LOCAL_ONLY = "local_only"  # no signed-in user


@dataclass
class SaveResult:
    """Outcome of a save. The local cache write always happened."""

    status: SyncStatus
    error: MarginaliaError | None = None

    @property
    def synced(self) -> bool:
        return self.status is SyncStatus.SYNCED

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "error": str(self.error) if self.error else None,
            "errorType": type(self.error).__name__ if self.error else None,
        }


def _noop() -> None:
    pass


class SyncOrchestrator:
    """Composes the local cache and the remote sync client."""

    def __init__(
        self,
        cache: LocalCache,
        identity: IdentityResolver,
        store: DocumentStore | None = None,
        *,
        sync_config: SyncConfig | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.cache = cache
        self._identity = identity
        self._store = store
        self._sync_config = sync_config or SyncConfig()
        self._clock = clock
        self._client: RemoteSyncClient | None = None
        self._pending: dict[str, tuple[NoteScope, UrlContext]] = {}  # local key → origin

    # ── Client lifecycle ─────────────────────────────────────

    @property
    def client(self) -> RemoteSyncClient | None:
        return self._client

    def _build_client(self, user_id: str) -> RemoteSyncClient:
        cfg = self._sync_config
        return RemoteSyncClient(
            user_id,
            self._store,
            max_notes=cfg.max_notes,
            max_note_length=cfg.max_note_length,
            throttle_ms=cfg.throttle_ms,
            clock=self._clock,
        )

    def _discard_client(self) -> None:
        if self._client is not None:
            logger.info("Discarding sync client for user %s", self._client.user_id)
            self._client.close()
            self._client = None
            self._pending.clear()

    async def initialize_sync(self) -> RemoteSyncClient | None:
        """Resolve the current identity and make the client match it.

        Absence of an identity is normal before sign-in: the orchestrator then
        runs cache-only.
        """
        if self._store is None:
            return None

        user_id = self._identity.current_user_id()
        if not user_id:
            if self._client is not None:
                self._discard_client()
            return None
        if self._client is not None and self._client.user_id == user_id:
            return self._client

        self._discard_client()
        self._client = self._build_client(user_id)
        logger.info("Sync initialized for user %s", user_id)
        await self._migrate(self._client)
        return self._client

    async def _migrate(self, client: RemoteSyncClient) -> None:
        migrator = LegacyMigrator(self.cache, client)
        if await migrator.is_done():
            return
        logger.info("Migrating local notes to the remote store...")
        try:
            await migrator.run()
        except RemoteUnavailableError as e:
            logger.warning("Legacy migration failed, will retry on next sign-in: %s", e)

    # ── Write-through ────────────────────────────────────────

    async def save_notes(
        self, scope: NoteScope | str, context: UrlContext, notes: list[Note]
    ) -> SaveResult:
        """Save remotely if possible, then always save to the cache.

        Remote failures never raise; they are reported in the result.
        """
        scope = NoteScope.coerce(scope)
        key = get_storage_key(scope, context)
        client = await self.initialize_sync()

        result = SaveResult(SyncStatus.LOCAL_ONLY)
        if client is not None:
            try:
                await client.save_notes(scope, context, notes)
                result = SaveResult(SyncStatus.SYNCED)
                self._pending.pop(key, None)
            except MarginaliaError as e:
                logger.error("Failed to sync %s to remote store: %s", key, e)
                result = SaveResult(SyncStatus.PENDING, e)
                self._pending[key] = (scope, context)

        await self.cache.set(key, notes_to_wire(notes))
        return result

    @property
    def pending_keys(self) -> list[str]:
        return list(self._pending)

    async def retry_pending(self) -> int:
        """Push cached collections whose last save missed the remote store."""
        client = await self.initialize_sync()
        if client is None or not self._pending:
            return 0

        synced = 0
        for key in list(self._pending):
            try:
                await self._push_pending(client, key)
            except MarginaliaError as e:
                logger.warning("Retry of %s failed: %s", key, e)
                continue
            synced += 1
        if synced:
            logger.info("Re-synced %d pending collections", synced)
        return synced

    async def _push_pending(self, client: RemoteSyncClient, key: str) -> None:
        scope, context = self._pending[key]
        notes = notes_from_wire(await self.cache.get(key, []))
        await client.save_notes(scope, context, notes)
        self._pending.pop(key, None)

    # ── Read-through ─────────────────────────────────────────

    async def load_notes(self, scope: NoteScope | str, context: UrlContext) -> list[Note]:
        """Read remotely (refreshing the cache) or fall back to the cache.

        A collection still pending sync is pushed before the read. If the push
        is rejected outright the remote copy wins.
        """
        scope = NoteScope.coerce(scope)
        key = get_storage_key(scope, context)
        client = await self.initialize_sync()

        if client is not None:
            try:
                if key in self._pending:
                    try:
                        await self._push_pending(client, key)
                    except (ValidationError, RateLimitError) as e:
                        logger.warning("Unsynced edit of %s superseded by remote copy: %s", key, e)
                        self._pending.pop(key, None)
                notes = await client.load_notes(scope, context)
            except RemoteUnavailableError as e:
                logger.warning("Failed to load %s remotely, using local cache: %s", key, e)
            else:
                await self.cache.set(key, notes_to_wire(notes))
                return notes

        return notes_from_wire(await self.cache.get(key, []))

    # ── Subscriptions ────────────────────────────────────────

    async def subscribe_to_scope(
        self, scope: NoteScope | str, context: UrlContext, callback: NotesCallback
    ) -> Unsubscribe:
        """Live subscription when signed in; a single cached delivery otherwise."""
        scope = NoteScope.coerce(scope)
        client = await self.initialize_sync()
        if client is not None:
            try:
                return await client.subscribe_to_scope(scope, context, callback)
            except RemoteUnavailableError as e:
                logger.warning("Subscribe to %s failed, serving cache: %s", scope.value, e)

        key = get_storage_key(scope, context)
        callback(notes_from_wire(await self.cache.get(key, [])))
        return _noop

    # ── Lifecycle ────────────────────────────────────────────

    def close(self) -> None:
        self._discard_client()
