"""Install-scoped persistent key/value cache.

A single JSON file holds every entry. The file is read once and then kept in
memory; each write rewrites the file atomically. No validation or throttling
happens here.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class LocalCache:
    """Async key/value map persisted to ``<root>/cache.json``."""

    FILENAME = "cache.json"

    def __init__(self, root: Path) -> None:
        self.root = root
        self.path = root / self.FILENAME
        self._data: dict[str, Any] | None = None
        self._lock = asyncio.Lock()

    # ── Persistence ───────────────────────────────────────────

    def _read_file(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        data = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Corrupt cache file (expected an object): {self.path}")
        return data

    def _write_file(self, data: dict[str, Any]) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, self.path)

    async def _load(self) -> dict[str, Any]:
        if self._data is None:
            self._data = await asyncio.to_thread(self._read_file)
            logger.debug("Loaded %d cache entries from %s", len(self._data), self.path)
        return self._data

    # ── Public API ────────────────────────────────────────────

    async def get(self, key: str, default: Any = None) -> Any:
        data = await self._load()
        return data.get(key, default)

    async def set(self, key: str, value: Any) -> None:
        await self.set_many({key: value})

    async def get_many(self, keys: list[str] | None = None) -> dict[str, Any]:
        """Return the requested entries, or every entry when *keys* is None."""
        data = await self._load()
        if keys is None:
            return dict(data)
        return {k: data[k] for k in keys if k in data}

    async def set_many(self, items: dict[str, Any]) -> None:
        async with self._lock:
            data = await self._load()
            data.update(items)
            snapshot = dict(data)
            await asyncio.to_thread(self._write_file, snapshot)
