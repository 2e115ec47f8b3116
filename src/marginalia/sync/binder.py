"""Keeps one subscription per visible scope bound to the current context."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from marginalia.notes.types import Note, NoteScope, UrlContext, visible_scopes

if TYPE_CHECKING:
    from marginalia.storage.base import Unsubscribe
    from marginalia.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

# Receives (scope, notes) for every delivery on a bound scope
ScopeSink = Callable[[NoteScope, list[Note]], None]


class ScopeBinder:
    """Rebinds all per-scope subscriptions whenever the context changes."""

    def __init__(self, orchestrator: SyncOrchestrator, sink: ScopeSink) -> None:
        self._orchestrator = orchestrator
        self._sink = sink
        self._context: UrlContext | None = None
        self._subscriptions: list[Unsubscribe] = []
        self._generation = 0

    @property
    def context(self) -> UrlContext | None:
        return self._context

    @property
    def bound_count(self) -> int:
        return len(self._subscriptions)

    async def bind(self, context: UrlContext | None) -> None:
        """Tear down every current subscription, then subscribe for *context*."""
        self.unbind()
        generation = self._generation
        self._context = context
        if context is None:
            return

        for scope in visible_scopes(context):
            try:
                unsubscribe = await self._orchestrator.subscribe_to_scope(
                    scope, context, self._forward(scope, generation)
                )
            except BaseException:
                if generation == self._generation:
                    self.unbind()
                raise
            if generation != self._generation:
                # Rebound or unbound while awaiting
                unsubscribe()
                return
            self._subscriptions.append(unsubscribe)
        logger.debug("Bound %d scopes for %s", len(self._subscriptions), context.url)

    def _forward(self, scope: NoteScope, generation: int) -> Callable[[list[Note]], None]:
        def deliver(notes: list[Note]) -> None:
            if generation == self._generation:
                self._sink(scope, notes)

        return deliver

    def unbind(self) -> None:
        self._generation += 1
        subscriptions, self._subscriptions = self._subscriptions, []
        for unsubscribe in subscriptions:
            unsubscribe()
        self._context = None
