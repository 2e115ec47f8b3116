"""Process-local document store with synchronous change fan-out."""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from typing import Any

from marginalia.errors import RemoteUnavailableError
from marginalia.notes.types import now_ms
from marginalia.storage.base import DocumentCallback, Unsubscribe, resolve_server_values

logger = logging.getLogger(__name__)


class InMemoryDocumentStore:
    """Dict-backed DocumentStore.

    Set ``offline = True`` to make every call fail like an unreachable server.
    """

    def __init__(self, clock: Callable[[], int] | None = None) -> None:
        self._docs: dict[str, dict[str, Any]] = {}
        self._watchers: dict[str, dict[int, DocumentCallback]] = {}
        self._next_id = 0
        self._clock = clock or now_ms
        self.offline = False
        self.writes: list[tuple[str, dict[str, Any]]] = []

    def _check_online(self) -> None:
        if self.offline:
            raise RemoteUnavailableError("remote store is offline")

    async def get_document(self, path: str) -> dict[str, Any] | None:
        self._check_online()
        doc = self._docs.get(path)
        return copy.deepcopy(doc) if doc is not None else None

    async def set_document(self, path: str, data: dict[str, Any]) -> None:
        self._check_online()
        doc = resolve_server_values(copy.deepcopy(data), self._clock())
        self._docs[path] = doc
        self.writes.append((path, doc))
        for callback in list(self._watchers.get(path, {}).values()):
            try:
                callback(copy.deepcopy(doc))
            except Exception as e:
                logger.error("Watcher for %s failed: %s", path, e)

    def watch(self, path: str, callback: DocumentCallback) -> Unsubscribe:
        self._next_id += 1
        watch_id = self._next_id
        self._watchers.setdefault(path, {})[watch_id] = callback

        def unsubscribe() -> None:
            watchers = self._watchers.get(path)
            if watchers is None:
                return
            watchers.pop(watch_id, None)
            if not watchers:
                del self._watchers[path]

        return unsubscribe

    def watcher_count(self, path: str) -> int:
        return len(self._watchers.get(path, {}))
