"""In-process tab registry fed by observed tab messages."""

from __future__ import annotations

import logging

from marginalia.connectors.base import TabMessage

logger = logging.getLogger(__name__)


class TabTracker:
    """TabSource built from the TAB_CHANGED / TAB_UPDATED stream.

    TAB_CHANGED marks a tab active; TAB_UPDATED records its new URL. A URL
    carried by either message is remembered for that tab.
    """

    def __init__(self) -> None:
        self._urls: dict[int, str] = {}
        self._active: int | None = None

    def observe(self, message: TabMessage) -> None:
        if message.url:
            self._urls[message.tab_id] = message.url
        if message.type == "TAB_CHANGED":
            self._active = message.tab_id
        elif self._active is None:
            self._active = message.tab_id
        logger.debug("Tab %s %s (active=%s)", message.tab_id, message.type, self._active)

    def close_tab(self, tab_id: int) -> None:
        self._urls.pop(tab_id, None)
        if self._active == tab_id:
            self._active = None

    @property
    def active_tab_id(self) -> int | None:
        return self._active

    async def active_tab_url(self) -> str | None:
        if self._active is None:
            return None
        return self._urls.get(self._active)
