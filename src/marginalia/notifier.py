"""Context change notifier — recomputes the active UrlContext on tab events.

Tab events arrive unordered relative to whatever the consumer is doing. Each
event (re)starts a short debounce timer; when it fires the active tab is
queried again and the resulting context (or None) is handed to the single
registered callback. Only the timer is ever cancelled: a callback that has
started runs to completion, and callbacks never overlap.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from marginalia.notes.context import get_current_tab_context
from marginalia.notes.types import UrlContext

if TYPE_CHECKING:
    from marginalia.connectors.base import TabMessage, TabSource

logger = logging.getLogger(__name__)

ContextCallback = Callable[[UrlContext | None], Awaitable[None]]


class ContextNotifier:
    """Single-subscriber, debounced context recomputation trigger."""

    def __init__(self, tabs: TabSource, *, debounce: float = 0.1) -> None:
        self._tabs = tabs
        self._debounce = debounce
        self._callback: ContextCallback | None = None
        self._registration = 0
        self._pending: asyncio.Task | None = None
        self._waiting = False
        self._lock = asyncio.Lock()
        self.current: UrlContext | None = None

    def listen(self, callback: ContextCallback) -> Callable[[], None]:
        """Register *callback*, replacing any previous one."""
        self._registration += 1
        registration = self._registration
        self._callback = callback

        def unsubscribe() -> None:
            if self._registration == registration:
                self._callback = None

        return unsubscribe

    async def notify(self, message: TabMessage) -> None:
        """Schedule a recomputation; a newer event supersedes a pending one."""
        logger.debug("Tab event %s (tab=%s)", message.type, message.tab_id)
        if self._waiting and self._pending is not None:
            self._pending.cancel()
        self._waiting = True
        self._pending = asyncio.create_task(self._debounced())

    async def _debounced(self) -> None:
        try:
            if self._debounce > 0:
                await asyncio.sleep(self._debounce)
        finally:
            if self._pending is asyncio.current_task():
                self._waiting = False
        await self.refresh()

    async def refresh(self) -> UrlContext | None:
        """Recompute the context now and deliver it."""
        async with self._lock:
            context = await get_current_tab_context(self._tabs)
            self.current = context
            callback = self._callback
            if callback is not None:
                try:
                    await callback(context)
                except Exception as e:
                    logger.error("Context callback failed: %s", e)
        return context

    async def flush(self) -> None:
        """Wait for a pending recomputation, if any."""
        task = self._pending
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    async def close(self) -> None:
        self._callback = None
        self._waiting = False
        task, self._pending = self._pending, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
