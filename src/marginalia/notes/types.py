"""Core data types: note scopes, URL contexts and notes."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class NoteScope(str, Enum):
    """Granularity at which notes are grouped."""

    BROWSER = "browser"
    DOMAIN = "domain"
    SUBDOMAIN = "subdomain"
    PAGE = "page"

    @classmethod
    def coerce(cls, value: NoteScope | str) -> NoteScope:
        """Return the scope for *value*, falling back to BROWSER when unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            logger.warning("Unknown note scope %r, falling back to browser", value)
            return cls.BROWSER


# Most specific first
SCOPE_ORDER: tuple[NoteScope, ...] = (
    NoteScope.PAGE,
    NoteScope.SUBDOMAIN,
    NoteScope.DOMAIN,
    NoteScope.BROWSER,
)


@dataclass(frozen=True)
class UrlContext:
    """Structural decomposition of a page URL."""

    url: str
    domain: str
    subdomain: str
    path: str
    full_path: str

    @property
    def has_subdomain(self) -> bool:
        return self.subdomain != self.domain

    def to_dict(self) -> dict[str, str]:
        return {
            "url": self.url,
            "domain": self.domain,
            "subdomain": self.subdomain,
            "path": self.path,
            "fullPath": self.full_path,
        }


def visible_scopes(context: UrlContext) -> list[NoteScope]:
    """Scopes to present for *context*, most specific first.

    The subdomain scope is dropped when the hostname has no genuine subdomain.
    """
    return [s for s in SCOPE_ORDER if s is not NoteScope.SUBDOMAIN or context.has_subdomain]


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Note:
    """A single user note."""

    id: str
    text: str
    created_at: int
    updated_at: int

    @classmethod
    def create(cls, text: str, now: int | None = None) -> Note:
        ts = now if now is not None else now_ms()
        return cls(id=uuid.uuid4().hex, text=text, created_at=ts, updated_at=ts)

    def edited(self, text: str, now: int | None = None) -> Note:
        """Return a copy with new text and a bumped updated_at."""
        return Note(
            id=self.id,
            text=text,
            created_at=self.created_at,
            updated_at=now if now is not None else now_ms(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Note:
        return cls(
            id=str(data["id"]),
            text=str(data.get("text", "")),
            created_at=int(data.get("createdAt") or 0),
            updated_at=int(data.get("updatedAt") or 0),
        )


def notes_to_wire(notes: list[Note]) -> list[dict[str, Any]]:
    return [n.to_dict() for n in notes]


def notes_from_wire(raw: Any) -> list[Note]:
    """Decode a stored note list; anything that is not a list decodes as empty."""
    if not isinstance(raw, list):
        return []
    return [Note.from_dict(item) for item in raw if isinstance(item, dict) and "id" in item]
