"""Current-user identity — the one capability needed from authentication."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class IdentityResolver(Protocol):
    """Synchronous accessor for the signed-in user."""

    def current_user_id(self) -> str | None:
        """Return the authenticated user's id, or None before sign-in."""
        ...


class StaticIdentity:
    """Identity fixed by configuration; ``sign_in``/``sign_out`` swap it at runtime."""

    def __init__(self, user_id: str | None = None) -> None:
        self._user_id = user_id or None

    def current_user_id(self) -> str | None:
        return self._user_id

    def sign_in(self, user_id: str) -> None:
        self._user_id = user_id

    def sign_out(self) -> None:
        self._user_id = None
