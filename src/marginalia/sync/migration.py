"""One-time backfill of single-tier cache entries into the remote store.

Before dual-tier sync existed, note collections lived only in the local
cache under ``notes:<scope>[:<discriminator>]`` keys. The sweep re-derives
each entry's remote key and writes it unconditionally, then records a flag
so it never runs again.

Migrated writes bypass the count/size validation and the throttle of live
writes. Oversized legacy collections are logged but still written; the
remote store may reject them.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from marginalia.notes.keys import build_remote_key, parse_legacy_key

if TYPE_CHECKING:
    from marginalia.storage.cache import LocalCache
    from marginalia.sync.client import RemoteSyncClient

logger = logging.getLogger(__name__)

MIGRATION_FLAG = "_migrated_to_remote"


class LegacyMigrator:
    """Sweep the local cache once and push legacy collections remotely."""

    def __init__(self, cache: LocalCache, client: RemoteSyncClient) -> None:
        self._cache = cache
        self._client = client

    async def is_done(self) -> bool:
        return bool(await self._cache.get(MIGRATION_FLAG, False))

    async def run(self) -> int:
        """Migrate every recognised entry. Returns how many were written.

        Transport failures propagate and leave the flag unset so the sweep is
        retried on the next initialisation.
        """
        if await self.is_done():
            logger.debug("Legacy migration already done")
            return 0

        entries = await self._cache.get_many()
        migrated = 0
        for key, value in entries.items():
            if not isinstance(value, list):
                continue
            parsed = parse_legacy_key(key)
            if parsed is None:
                logger.debug("Skipping unrecognised cache key %s", key)
                continue

            scope, context = parsed
            remote_key = build_remote_key(scope, context)
            self._warn_if_oversized(key, value)
            await self._client.write_raw(remote_key, value)
            migrated += 1

        await self._cache.set(MIGRATION_FLAG, True)
        logger.info("Legacy migration complete: %d collections", migrated)
        return migrated

    def _warn_if_oversized(self, key: str, value: list) -> None:
        if len(value) > self._client.max_notes:
            logger.warning("Legacy entry %s has %d notes (limit %d)",
                           key, len(value), self._client.max_notes)
        for item in value:
            text = item.get("text", "") if isinstance(item, dict) else ""
            if isinstance(text, str) and len(text) > self._client.max_note_length:
                logger.warning("Legacy entry %s holds a note over %d characters",
                               key, self._client.max_note_length)
                break
