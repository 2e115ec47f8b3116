"""HTTP document store client (aiohttp).

Speaks a small JSON document protocol:

    GET  {base}/{path}    → 200 document | 404 missing
    PUT  {base}/{path}    ← document; {".sv": "timestamp"} is stamped server-side
    GET  {base}/{path}    with Accept: text/event-stream → change stream

The change stream emits ``put``/``patch`` events whenever the document
changes and ``keep-alive`` events otherwise. On every change event the
document is re-read and handed to the watcher, so event payloads are not
interpreted.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import quote, urlparse

import aiohttp

from marginalia.errors import RemoteUnavailableError
from marginalia.storage.base import DocumentCallback, Unsubscribe

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_RETRY_DELAY = 5.0
_CHANGE_EVENTS = {"put", "patch"}
_LOCAL_HOSTS = ("localhost", "127.0.0.1", "::1")


class HttpDocumentStore:
    """DocumentStore backed by a remote JSON/SSE endpoint."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        *,
        timeout: float = DEFAULT_TIMEOUT,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ) -> None:
        self._base_url = base_url.rstrip("/")

        # Refuse non-HTTPS for remote hosts (bearer token would be sent in cleartext)
        if not self._base_url.startswith("https://"):
            host = urlparse(self._base_url).hostname or ""
            if host not in _LOCAL_HOSTS:
                raise ValueError(
                    f"Remote store URL must use HTTPS (got {self._base_url}). "
                    "Use HTTPS to protect credentials, or localhost for development."
                )

        self._headers: dict[str, str] = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._retry_delay = retry_delay
        self._session: aiohttp.ClientSession | None = None
        self._watch_tasks: set[asyncio.Task] = set()

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{quote(path.strip('/'), safe='/')}"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers=self._headers, timeout=self._timeout)
        return self._session

    # ── Point reads and writes ───────────────────────────────

    async def get_document(self, path: str) -> dict[str, Any] | None:
        try:
            async with self._get_session().get(self._url(path)) as resp:
                if resp.status == 404:
                    return None
                if resp.status != 200:
                    raise RemoteUnavailableError(f"GET {path} failed: HTTP {resp.status}")
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RemoteUnavailableError(f"GET {path} failed: {e}") from e
        if data is None:
            return None
        if not isinstance(data, dict):
            raise RemoteUnavailableError(f"GET {path} returned a non-object document")
        return data

    async def set_document(self, path: str, data: dict[str, Any]) -> None:
        try:
            async with self._get_session().put(self._url(path), json=data) as resp:
                if resp.status not in (200, 201, 204):
                    body = await resp.text()
                    raise RemoteUnavailableError(
                        f"PUT {path} failed: HTTP {resp.status} {body[:200]}"
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RemoteUnavailableError(f"PUT {path} failed: {e}") from e

    # ── Change stream ────────────────────────────────────────

    def watch(self, path: str, callback: DocumentCallback) -> Unsubscribe:
        task = asyncio.get_running_loop().create_task(self._watch_loop(path, callback))
        self._watch_tasks.add(task)
        task.add_done_callback(self._watch_tasks.discard)

        def unsubscribe() -> None:
            task.cancel()

        return unsubscribe

    async def _watch_loop(self, path: str, callback: DocumentCallback) -> None:
        while True:
            try:
                await self._stream_changes(path, callback)
                logger.debug("Change stream for %s ended, reconnecting", path)
            except (aiohttp.ClientError, asyncio.TimeoutError, RemoteUnavailableError) as e:
                logger.warning("Change stream for %s dropped: %s", path, e)
            await asyncio.sleep(self._retry_delay)

    async def _stream_changes(self, path: str, callback: DocumentCallback) -> None:
        no_timeout = aiohttp.ClientTimeout(total=None, sock_read=None)
        headers = {"Accept": "text/event-stream"}
        async with self._get_session().get(
            self._url(path), headers=headers, timeout=no_timeout
        ) as resp:
            if resp.status != 200:
                raise RemoteUnavailableError(f"watch {path} failed: HTTP {resp.status}")
            event: str | None = None
            async for raw in resp.content:
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                if line.startswith("event:"):
                    event = line[len("event:"):].strip()
                elif not line:
                    if event in _CHANGE_EVENTS:
                        await self._deliver(path, callback)
                    event = None

    async def _deliver(self, path: str, callback: DocumentCallback) -> None:
        doc = await self.get_document(path)
        try:
            callback(doc)
        except Exception as e:
            logger.error("Watcher for %s failed: %s", path, e)

    # ── Lifecycle ────────────────────────────────────────────

    async def close(self) -> None:
        tasks = list(self._watch_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._session is not None and not self._session.closed:
            await self._session.close()
