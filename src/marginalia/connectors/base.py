"""Tab message boundary and the tab-query protocol."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Protocol, runtime_checkable

from marginalia.errors import ParseError

TabMessageType = Literal["TAB_CHANGED", "TAB_UPDATED"]
TAB_MESSAGE_TYPES: tuple[str, ...] = ("TAB_CHANGED", "TAB_UPDATED")


@dataclass(frozen=True)
class TabMessage:
    """A validated tab event sent by the host browser."""

    type: TabMessageType
    tab_id: int
    url: str | None = None


def parse_tab_message(raw: Any) -> TabMessage:
    """Validate an untyped message payload. Raises ParseError on anything else."""
    if not isinstance(raw, dict):
        raise ParseError(f"Tab message must be an object, got {type(raw).__name__}")

    msg_type = raw.get("type")
    if msg_type not in TAB_MESSAGE_TYPES:
        raise ParseError(f"Unknown tab message type: {msg_type!r}")

    tab_id = raw.get("tabId")
    if isinstance(tab_id, bool) or not isinstance(tab_id, int):
        raise ParseError(f"tabId must be an integer, got {tab_id!r}")

    url = raw.get("url")
    if url is not None and not isinstance(url, str):
        raise ParseError(f"url must be a string, got {type(url).__name__}")

    return TabMessage(type=msg_type, tab_id=tab_id, url=url or None)


@runtime_checkable
class TabSource(Protocol):
    """Host capability: the URL of the active tab in the current window."""

    async def active_tab_url(self) -> str | None:
        ...
