"""Remote document store protocol and shared types."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

# Placeholder the store replaces with its own clock (ms epoch) on write
SERVER_TIMESTAMP = {".sv": "timestamp"}

# Callback fired with the new document (or None when it was removed)
DocumentCallback = Callable[[dict[str, Any] | None], None]
Unsubscribe = Callable[[], None]


def user_notes_path(user_id: str, remote_key: str) -> str:
    """Document path for one scope-context collection of one user."""
    return f"users/{user_id}/notes/{remote_key}"


def resolve_server_values(data: dict[str, Any], now_ms: int) -> dict[str, Any]:
    """Replace top-level SERVER_TIMESTAMP placeholders with *now_ms*."""
    return {k: (now_ms if v == SERVER_TIMESTAMP else v) for k, v in data.items()}


@runtime_checkable
class DocumentStore(Protocol):
    """Per-path JSON document store with change notification.

    Transport and authorization failures must surface as RemoteUnavailableError.
    """

    async def get_document(self, path: str) -> dict[str, Any] | None:
        """Return the document at *path*, or None when it does not exist."""
        ...

    async def set_document(self, path: str, data: dict[str, Any]) -> None:
        """Overwrite the document at *path*."""
        ...

    def watch(self, path: str, callback: DocumentCallback) -> Unsubscribe:
        """Call *callback* on every later change of *path*. Returns a canceller."""
        ...
