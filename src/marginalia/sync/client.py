"""Per-user client for the remote document store.

Every write goes through validate → throttle-check → write. Subscriptions
share one backend watch per document and fan changes out to each
registration.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from marginalia.errors import RateLimitError, ValidationError
from marginalia.notes.keys import build_remote_key
from marginalia.notes.types import Note, NoteScope, UrlContext, notes_from_wire, notes_to_wire
from marginalia.storage.base import SERVER_TIMESTAMP, DocumentStore, Unsubscribe, user_notes_path

if TYPE_CHECKING:
    from marginalia.storage.cache import LocalCache

logger = logging.getLogger(__name__)

MAX_NOTES = 100
MAX_NOTE_LENGTH = 50_000
THROTTLE_MS = 1000

NotesCallback = Callable[[list[Note]], None]


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


@dataclass
class _Channel:
    """Registrations sharing one backend watch."""

    stop_watch: Unsubscribe
    callbacks: dict[int, NotesCallback] = field(default_factory=dict)


class RemoteSyncClient:
    """Remote reads, validated writes and change subscriptions for one user."""

    def __init__(
        self,
        user_id: str,
        store: DocumentStore,
        *,
        max_notes: int = MAX_NOTES,
        max_note_length: int = MAX_NOTE_LENGTH,
        throttle_ms: int = THROTTLE_MS,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if not user_id:
            raise ValueError("user_id is required")
        self.user_id = user_id
        self._store = store
        self.max_notes = max_notes
        self.max_note_length = max_note_length
        self.throttle_ms = throttle_ms
        self._clock = clock or _monotonic_ms
        self._last_write: dict[str, float] = {}  # remote key → clock() of last successful write
        self._channels: dict[str, _Channel] = {}
        self._next_registration = 0

    def _path(self, remote_key: str) -> str:
        return user_notes_path(self.user_id, remote_key)

    # ── Write path ───────────────────────────────────────────

    def validate(self, notes: list[Note]) -> None:
        if len(notes) > self.max_notes:
            raise ValidationError(f"maximum {self.max_notes} notes")
        for note in notes:
            if len(note.text) > self.max_note_length:
                raise ValidationError("note exceeds maximum size")

    def _check_throttle(self, remote_key: str) -> None:
        last = self._last_write.get(remote_key)
        if last is not None and self._clock() - last < self.throttle_ms:
            raise RateLimitError("please wait before saving again")

    async def save_notes(self, scope: NoteScope | str, context: UrlContext, notes: list[Note]) -> None:
        """Overwrite the remote collection for (scope, context)."""
        self.validate(notes)
        remote_key = build_remote_key(scope, context)
        self._check_throttle(remote_key)

        await self._store.set_document(
            self._path(remote_key),
            {"notes": notes_to_wire(notes), "updatedAt": SERVER_TIMESTAMP},
        )
        self._last_write[remote_key] = self._clock()
        logger.debug("Saved %d notes to %s", len(notes), remote_key)

    async def write_raw(self, remote_key: str, raw_notes: list[Any]) -> None:
        """Unvalidated, unthrottled write. Only the one-time migration uses this."""
        await self._store.set_document(
            self._path(remote_key),
            {"notes": raw_notes, "updatedAt": SERVER_TIMESTAMP},
        )

    # ── Read path ────────────────────────────────────────────

    async def load_notes(self, scope: NoteScope | str, context: UrlContext) -> list[Note]:
        """Point read; a missing document or notes field reads as an empty list."""
        doc = await self._store.get_document(self._path(build_remote_key(scope, context)))
        return notes_from_wire((doc or {}).get("notes"))

    # ── Subscriptions ────────────────────────────────────────

    async def subscribe_to_scope(
        self, scope: NoteScope | str, context: UrlContext, callback: NotesCallback
    ) -> Unsubscribe:
        """Deliver the current notes now and on every remote change.

        The returned callable removes this registration only.
        """
        remote_key = build_remote_key(scope, context)
        channel = self._channels.get(remote_key)
        if channel is None:
            stop = self._store.watch(
                self._path(remote_key), lambda doc: self._fan_out(remote_key, doc)
            )
            channel = _Channel(stop_watch=stop)
            self._channels[remote_key] = channel

        self._next_registration += 1
        registration = self._next_registration
        channel.callbacks[registration] = callback

        def unsubscribe() -> None:
            self._release(remote_key, registration)

        try:
            notes = await self.load_notes(scope, context)
        except BaseException:
            # Includes cancellation: the caller never receives unsubscribe
            unsubscribe()
            raise
        if registration in channel.callbacks:
            self._invoke(callback, notes, remote_key)
        return unsubscribe

    def _release(self, remote_key: str, registration: int) -> None:
        channel = self._channels.get(remote_key)
        if channel is None or registration not in channel.callbacks:
            return
        del channel.callbacks[registration]
        if not channel.callbacks:
            channel.stop_watch()
            del self._channels[remote_key]
            logger.debug("Released watch on %s", remote_key)

    def _fan_out(self, remote_key: str, doc: dict[str, Any] | None) -> None:
        channel = self._channels.get(remote_key)
        if channel is None:
            return
        notes = notes_from_wire((doc or {}).get("notes"))
        for callback in list(channel.callbacks.values()):
            self._invoke(callback, notes, remote_key)

    @staticmethod
    def _invoke(callback: NotesCallback, notes: list[Note], remote_key: str) -> None:
        try:
            callback(list(notes))
        except Exception as e:
            logger.error("Subscriber for %s failed: %s", remote_key, e)

    def subscription_count(self, scope: NoteScope | str, context: UrlContext) -> int:
        channel = self._channels.get(build_remote_key(scope, context))
        return len(channel.callbacks) if channel else 0

    # ── Migration & lifecycle ────────────────────────────────

    async def migrate_local_notes(self, cache: LocalCache) -> int:
        """Run the one-time legacy backfill from *cache*. Returns entries written."""
        from marginalia.sync.migration import LegacyMigrator

        return await LegacyMigrator(cache, self).run()

    def close(self) -> None:
        """Drop every subscription (logout)."""
        for channel in self._channels.values():
            channel.stop_watch()
        self._channels.clear()
