"""Badge text: how many notes are attached to the current page's context."""

from __future__ import annotations

from typing import TYPE_CHECKING

from marginalia.notes.types import NoteScope, UrlContext

if TYPE_CHECKING:
    from marginalia.sync.orchestrator import SyncOrchestrator

# Browser-wide notes apply everywhere, so they are not counted
CONTEXTUAL_SCOPES = (NoteScope.PAGE, NoteScope.SUBDOMAIN, NoteScope.DOMAIN)


def format_badge_text(count: int) -> str:
    """Empty for 0, the count itself up to 99, then "99+"."""
    if count <= 0:
        return ""
    if count > 99:
        return "99+"
    return str(count)


async def count_contextual_notes(orchestrator: SyncOrchestrator, context: UrlContext) -> int:
    total = 0
    for scope in CONTEXTUAL_SCOPES:
        total += len(await orchestrator.load_notes(scope, context))
    return total


async def badge_text(orchestrator: SyncOrchestrator, context: UrlContext | None) -> str:
    if context is None:
        return ""
    return format_badge_text(await count_contextual_notes(orchestrator, context))
