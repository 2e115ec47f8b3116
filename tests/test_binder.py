"""Tests for per-scope subscription rebinding."""

import asyncio

import pytest

from marginalia.connectors.base import TabMessage
from marginalia.connectors.tabs import TabTracker
from marginalia.identity import StaticIdentity
from marginalia.notes.context import parse_url_context
from marginalia.notes.types import Note, NoteScope
from marginalia.notifier import ContextNotifier
from marginalia.storage.memory import InMemoryDocumentStore
from marginalia.sync.binder import ScopeBinder
from marginalia.sync.orchestrator import SyncOrchestrator

NOTE = Note(id="n1", text="Remember the login flow", created_at=1, updated_at=1)


@pytest.fixture
def orchestrator(cache, identity, store, clock) -> SyncOrchestrator:
    return SyncOrchestrator(cache, identity, store, clock=clock)


@pytest.fixture
def deliveries() -> list:
    return []


@pytest.fixture
def binder(orchestrator, deliveries) -> ScopeBinder:
    return ScopeBinder(orchestrator, lambda scope, notes: deliveries.append((scope, notes)))


class TestScopeBinder:
    @pytest.mark.asyncio
    async def test_binds_every_visible_scope(self, binder, deliveries, ctx):
        await binder.bind(ctx)
        assert binder.bound_count == 4
        assert [scope for scope, _ in deliveries] == [
            NoteScope.PAGE,
            NoteScope.SUBDOMAIN,
            NoteScope.DOMAIN,
            NoteScope.BROWSER,
        ]

    @pytest.mark.asyncio
    async def test_subdomain_elided(self, binder, plain_ctx):
        await binder.bind(plain_ctx)
        assert binder.bound_count == 3

    @pytest.mark.asyncio
    async def test_forwards_updates(self, binder, orchestrator, deliveries, ctx):
        await binder.bind(ctx)
        deliveries.clear()
        await orchestrator.save_notes(NoteScope.DOMAIN, ctx, [NOTE])
        assert deliveries == [(NoteScope.DOMAIN, [NOTE])]

    @pytest.mark.asyncio
    async def test_rebind_tears_down_previous(self, binder, orchestrator, deliveries, ctx):
        await binder.bind(ctx)
        other = parse_url_context("https://other.org/home")
        await binder.bind(other)

        client = orchestrator.client
        for scope in NoteScope:
            assert client.subscription_count(scope, ctx) == (1 if scope is NoteScope.BROWSER else 0)
        assert binder.context == other

        deliveries.clear()
        await orchestrator.save_notes(NoteScope.PAGE, ctx, [NOTE])
        assert deliveries == []

    @pytest.mark.asyncio
    async def test_rebinding_same_context_does_not_duplicate(self, binder, orchestrator, deliveries, ctx):
        await binder.bind(ctx)
        await binder.bind(ctx)
        deliveries.clear()
        await orchestrator.save_notes(NoteScope.PAGE, ctx, [NOTE])
        assert deliveries == [(NoteScope.PAGE, [NOTE])]

    @pytest.mark.asyncio
    async def test_bind_none_unbinds(self, binder, orchestrator, ctx):
        await binder.bind(ctx)
        await binder.bind(None)
        assert binder.bound_count == 0
        assert binder.context is None
        assert orchestrator.client.subscription_count(NoteScope.PAGE, ctx) == 0

    @pytest.mark.asyncio
    async def test_unbind(self, binder, orchestrator, deliveries, ctx):
        await binder.bind(ctx)
        binder.unbind()
        deliveries.clear()
        await orchestrator.save_notes(NoteScope.BROWSER, ctx, [NOTE])
        assert deliveries == []

    @pytest.mark.asyncio
    async def test_cache_only_mode(self, cache, store, ctx):
        orchestrator = SyncOrchestrator(cache, StaticIdentity(None), store)
        await orchestrator.save_notes(NoteScope.PAGE, ctx, [NOTE])
        deliveries = []
        binder = ScopeBinder(orchestrator, lambda scope, notes: deliveries.append((scope, notes)))

        await binder.bind(ctx)

        assert (NoteScope.PAGE, [NOTE]) in deliveries
        assert binder.bound_count == 4


class SlowStore(InMemoryDocumentStore):
    """Store whose reads take a while, so a bind can be interrupted mid-way."""

    def __init__(self, delay: float) -> None:
        super().__init__(clock=lambda: 1_700_000_000_000)
        self.delay = delay

    async def get_document(self, path):
        await asyncio.sleep(self.delay)
        return await super().get_document(path)


class TestInterruptedBind:
    @pytest.mark.asyncio
    async def test_cancelled_bind_releases_subscriptions(self, cache, identity, clock, ctx):
        orchestrator = SyncOrchestrator(cache, identity, SlowStore(0.05), clock=clock)
        await orchestrator.initialize_sync()
        binder = ScopeBinder(orchestrator, lambda scope, notes: None)

        task = asyncio.create_task(binder.bind(ctx))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert binder.bound_count == 0
        for scope in NoteScope:
            assert orchestrator.client.subscription_count(scope, ctx) == 0

    @pytest.mark.asyncio
    async def test_tab_switch_during_bind_leaves_no_stale_watch(self, cache, identity, clock):
        orchestrator = SyncOrchestrator(cache, identity, SlowStore(0.02), clock=clock)
        binder = ScopeBinder(orchestrator, lambda scope, notes: None)
        tabs = TabTracker()
        notifier = ContextNotifier(tabs, debounce=0)
        notifier.listen(binder.bind)

        first_url, second_url = "https://a.example.com/x", "https://b.example.org/y"
        first = parse_url_context(first_url)

        msg = TabMessage("TAB_CHANGED", 1, first_url)
        tabs.observe(msg)
        await notifier.notify(msg)
        await asyncio.sleep(0.01)
        msg = TabMessage("TAB_CHANGED", 2, second_url)
        tabs.observe(msg)
        await notifier.notify(msg)
        await notifier.flush()

        assert binder.context == parse_url_context(second_url)
        client = orchestrator.client
        for scope in (NoteScope.PAGE, NoteScope.SUBDOMAIN, NoteScope.DOMAIN):
            assert client.subscription_count(scope, first) == 0

        binder.unbind()
        for scope in NoteScope:
            assert client.subscription_count(scope, first) == 0
        await notifier.close()
