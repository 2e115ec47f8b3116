"""HTTP bridge between the browser extension and the sync engine.

The extension's background script forwards tab events here and the sidebar
reads and writes notes through it:

    POST /events              {type, tabId, url?}   tab message
    GET  /context                                   current context + bound notes
    GET  /notes?scope=&url=                         load notes
    PUT  /notes               {scope, url, notes}   save notes
    GET  /badge[?url=]                              badge text
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from aiohttp import web

from marginalia.badge import badge_text
from marginalia.connectors.base import parse_tab_message
from marginalia.errors import ParseError
from marginalia.notes.context import parse_url_context
from marginalia.notes.types import Note, NoteScope, UrlContext, notes_from_wire, notes_to_wire

if TYPE_CHECKING:
    from marginalia.config import BridgeConfig
    from marginalia.connectors.tabs import TabTracker
    from marginalia.notifier import ContextNotifier
    from marginalia.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


def _bad_request(message: str) -> web.Response:
    return web.json_response({"code": 400, "error": message}, status=400)


def _scope_param(value: str | None) -> NoteScope:
    if value not in {s.value for s in NoteScope}:
        raise ParseError(f"Unknown scope: {value!r}")
    return NoteScope(value)


def _context_param(value: str | None) -> UrlContext:
    context = parse_url_context(value) if value else None
    if context is None:
        raise ParseError(f"Not an absolute URL: {value!r}")
    return context


class NotesBridge:
    """aiohttp server exposing the orchestrator and the tab event channel."""

    def __init__(
        self,
        config: BridgeConfig,
        orchestrator: SyncOrchestrator,
        notifier: ContextNotifier,
        tabs: TabTracker,
    ) -> None:
        self._config = config
        self._orchestrator = orchestrator
        self._notifier = notifier
        self._tabs = tabs
        self._runner: web.AppRunner | None = None
        # Latest delivery per bound scope, fed by ScopeBinder
        self.snapshot: dict[NoteScope, list[Note]] = {}

    @property
    def name(self) -> str:
        return "bridge"

    def record(self, scope: NoteScope, notes: list[Note]) -> None:
        """ScopeBinder sink."""
        self.snapshot[scope] = notes

    def clear_snapshot(self) -> None:
        self.snapshot = {}

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/events", self._handle_event)
        app.router.add_get("/context", self._handle_context)
        app.router.add_get("/notes", self._handle_load)
        app.router.add_put("/notes", self._handle_save)
        app.router.add_get("/badge", self._handle_badge)
        return app

    # ── Lifecycle ────────────────────────────────────────────

    async def start(self) -> None:
        self._runner = web.AppRunner(self.make_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await site.start()
        logger.info("Bridge listening on %s:%d", self._config.host, self._config.port)

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Bridge stopped")

    # ── Handlers ─────────────────────────────────────────────

    async def _read_json(self, request: web.Request) -> object:
        try:
            return await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ParseError(f"Invalid JSON body: {e}") from e

    async def _handle_event(self, request: web.Request) -> web.Response:
        try:
            message = parse_tab_message(await self._read_json(request))
        except ParseError as e:
            logger.warning("Rejected tab message: %s", e)
            return _bad_request(str(e))

        self._tabs.observe(message)
        await self._notifier.notify(message)
        return web.json_response({"code": 0})

    async def _handle_context(self, request: web.Request) -> web.Response:
        context = self._notifier.current
        return web.json_response(
            {
                "context": context.to_dict() if context else None,
                "notes": {scope.value: notes_to_wire(notes) for scope, notes in self.snapshot.items()},
            }
        )

    async def _handle_load(self, request: web.Request) -> web.Response:
        try:
            scope = _scope_param(request.query.get("scope"))
            context = _context_param(request.query.get("url"))
        except ParseError as e:
            return _bad_request(str(e))

        notes = await self._orchestrator.load_notes(scope, context)
        return web.json_response({"notes": notes_to_wire(notes)})

    async def _handle_save(self, request: web.Request) -> web.Response:
        try:
            body = await self._read_json(request)
            if not isinstance(body, dict):
                raise ParseError("Body must be an object")
            scope = _scope_param(body.get("scope"))
            context = _context_param(body.get("url"))
            raw_notes = body.get("notes")
            if not isinstance(raw_notes, list):
                raise ParseError("notes must be a list")
            notes = notes_from_wire(raw_notes)
            if len(notes) != len(raw_notes):
                raise ParseError("every note needs an id")
        except (ParseError, KeyError, TypeError, ValueError) as e:
            return _bad_request(str(e))

        result = await self._orchestrator.save_notes(scope, context, notes)
        return web.json_response(result.to_dict())

    async def _handle_badge(self, request: web.Request) -> web.Response:
        url = request.query.get("url")
        if url:
            context = parse_url_context(url)
        else:
            context = self._notifier.current
        return web.json_response({"text": await badge_text(self._orchestrator, context)})
