"""URL → UrlContext resolution."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from marginalia.notes.types import UrlContext

if TYPE_CHECKING:
    from marginalia.connectors.base import TabSource

logger = logging.getLogger(__name__)

# Schemes whose URLs always carry a host and a rooted path
_SPECIAL_SCHEMES = {"http", "https", "ws", "wss", "ftp"}


def derive_domain(hostname: str) -> str:
    """Registrable-domain heuristic: the last two labels of the hostname."""
    parts = hostname.split(".")
    if len(parts) >= 2:
        return ".".join(parts[-2:])
    return hostname


def parse_url_context(url: str) -> UrlContext | None:
    """Parse an absolute URL into a UrlContext, or None if it cannot be parsed."""
    if not isinstance(url, str):
        return None
    raw = url.strip()
    try:
        parts = urlsplit(raw)
        hostname = parts.hostname or ""
    except ValueError:
        return None

    scheme = parts.scheme.lower()
    if not scheme:
        return None
    if scheme in _SPECIAL_SCHEMES and not hostname:
        return None

    path = parts.path
    if not path and (scheme in _SPECIAL_SCHEMES or scheme == "file"):
        path = "/"

    full_path = path
    if parts.query:
        full_path += "?" + parts.query
    if parts.fragment:
        full_path += "#" + parts.fragment

    return UrlContext(
        url=url,
        domain=derive_domain(hostname),
        subdomain=hostname,
        path=path,
        full_path=full_path,
    )


async def get_current_tab_context(tabs: TabSource) -> UrlContext | None:
    """Resolve the active tab's URL into a context (None when there is no tab or URL)."""
    url = await tabs.active_tab_url()
    if not url:
        return None
    context = parse_url_context(url)
    if context is None:
        logger.debug("Active tab URL is not parseable: %s", url)
    return context
