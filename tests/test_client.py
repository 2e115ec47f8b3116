"""Tests for the remote sync client: validation, throttling, subscriptions."""

import pytest

from marginalia.errors import RateLimitError, RemoteUnavailableError, ValidationError
from marginalia.notes.types import Note, NoteScope
from marginalia.sync.client import RemoteSyncClient


def make_notes(count: int, text: str = "Note") -> list[Note]:
    return [Note(id=str(i), text=f"{text} {i}", created_at=1000, updated_at=1000) for i in range(count)]


@pytest.fixture
def client(store, clock) -> RemoteSyncClient:
    return RemoteSyncClient("user-1", store, clock=clock)


class TestSaveAndLoad:
    @pytest.mark.asyncio
    async def test_save_writes_user_document(self, client, store, ctx):
        notes = make_notes(2)
        await client.save_notes(NoteScope.DOMAIN, ctx, notes)

        path, doc = store.writes[-1]
        assert path == "users/user-1/notes/domain_example.com"
        assert doc["notes"] == [n.to_dict() for n in notes]
        assert doc["updatedAt"] == 1_700_000_000_000

    @pytest.mark.asyncio
    async def test_round_trip(self, client, ctx):
        notes = make_notes(3)
        await client.save_notes(NoteScope.PAGE, ctx, notes)
        assert await client.load_notes(NoteScope.PAGE, ctx) == notes

    @pytest.mark.asyncio
    async def test_save_empty_list(self, client, store, ctx):
        await client.save_notes(NoteScope.BROWSER, ctx, [])
        assert store.writes[-1][1]["notes"] == []

    @pytest.mark.asyncio
    async def test_load_missing_document(self, client, ctx):
        assert await client.load_notes(NoteScope.DOMAIN, ctx) == []

    @pytest.mark.asyncio
    async def test_load_document_without_notes(self, client, store, ctx):
        await store.set_document("users/user-1/notes/domain_example.com", {"updatedAt": 1})
        assert await client.load_notes(NoteScope.DOMAIN, ctx) == []

    @pytest.mark.asyncio
    async def test_load_transport_failure_raises(self, client, store, ctx):
        store.offline = True
        with pytest.raises(RemoteUnavailableError):
            await client.load_notes(NoteScope.DOMAIN, ctx)

    @pytest.mark.asyncio
    async def test_users_are_isolated(self, store, clock, ctx):
        alice = RemoteSyncClient("alice", store, clock=clock)
        bob = RemoteSyncClient("bob", store, clock=clock)
        await alice.save_notes(NoteScope.BROWSER, ctx, make_notes(1))
        assert await bob.load_notes(NoteScope.BROWSER, ctx) == []

    def test_user_id_required(self, store):
        with pytest.raises(ValueError):
            RemoteSyncClient("", store)


class TestThrottle:
    @pytest.mark.asyncio
    async def test_second_write_within_window_rejected(self, client, store, ctx):
        notes = make_notes(1)
        await client.save_notes(NoteScope.BROWSER, ctx, notes)
        with pytest.raises(RateLimitError, match="please wait before saving again"):
            await client.save_notes(NoteScope.BROWSER, ctx, notes)
        assert len(store.writes) == 1

    @pytest.mark.asyncio
    async def test_just_inside_window_rejected(self, client, clock, ctx):
        await client.save_notes(NoteScope.BROWSER, ctx, make_notes(1))
        clock.advance(999)
        with pytest.raises(RateLimitError):
            await client.save_notes(NoteScope.BROWSER, ctx, make_notes(1))

    @pytest.mark.asyncio
    async def test_write_after_window_allowed(self, client, store, clock, ctx):
        notes = make_notes(1)
        await client.save_notes(NoteScope.BROWSER, ctx, notes)
        clock.advance(1000)
        await client.save_notes(NoteScope.BROWSER, ctx, notes)
        assert len(store.writes) == 2

    @pytest.mark.asyncio
    async def test_independent_per_context(self, client, store, ctx):
        notes = make_notes(1)
        await client.save_notes(NoteScope.BROWSER, ctx, notes)
        await client.save_notes(NoteScope.DOMAIN, ctx, notes)
        await client.save_notes(NoteScope.PAGE, ctx, notes)
        assert len(store.writes) == 3

    @pytest.mark.asyncio
    async def test_state_is_per_client(self, store, clock, ctx):
        first = RemoteSyncClient("user-1", store, clock=clock)
        second = RemoteSyncClient("user-1", store, clock=clock)
        await first.save_notes(NoteScope.DOMAIN, ctx, make_notes(1))
        await second.save_notes(NoteScope.DOMAIN, ctx, make_notes(1))
        assert len(store.writes) == 2

    @pytest.mark.asyncio
    async def test_failed_write_does_not_start_window(self, client, store, ctx):
        store.offline = True
        with pytest.raises(RemoteUnavailableError):
            await client.save_notes(NoteScope.BROWSER, ctx, make_notes(1))
        store.offline = False
        await client.save_notes(NoteScope.BROWSER, ctx, make_notes(1))
        assert len(store.writes) == 1

    @pytest.mark.asyncio
    async def test_custom_window(self, store, clock, ctx):
        client = RemoteSyncClient("user-1", store, throttle_ms=5000, clock=clock)
        await client.save_notes(NoteScope.BROWSER, ctx, [])
        clock.advance(4000)
        with pytest.raises(RateLimitError):
            await client.save_notes(NoteScope.BROWSER, ctx, [])


class TestValidation:
    @pytest.mark.asyncio
    async def test_exactly_max_notes_allowed(self, client, store, ctx):
        await client.save_notes(NoteScope.BROWSER, ctx, make_notes(100))
        assert len(store.writes) == 1

    @pytest.mark.asyncio
    async def test_too_many_notes_rejected(self, client, store, ctx):
        with pytest.raises(ValidationError, match="maximum 100 notes"):
            await client.save_notes(NoteScope.BROWSER, ctx, make_notes(101))
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_note_at_size_limit_allowed(self, client, store, ctx):
        note = Note(id="1", text="a" * 50_000, created_at=1000, updated_at=1000)
        await client.save_notes(NoteScope.BROWSER, ctx, [note])
        assert len(store.writes) == 1

    @pytest.mark.asyncio
    async def test_oversized_note_rejected(self, client, store, ctx):
        note = Note(id="1", text="a" * 50_001, created_at=1000, updated_at=1000)
        with pytest.raises(ValidationError, match="exceeds maximum size"):
            await client.save_notes(NoteScope.BROWSER, ctx, [note])
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_validation_runs_before_throttle(self, client, ctx):
        await client.save_notes(NoteScope.BROWSER, ctx, [])
        with pytest.raises(ValidationError):
            await client.save_notes(NoteScope.BROWSER, ctx, make_notes(101))

    @pytest.mark.asyncio
    async def test_validation_runs_offline(self, client, store, ctx):
        store.offline = True
        with pytest.raises(ValidationError):
            await client.save_notes(NoteScope.BROWSER, ctx, make_notes(101))

    @pytest.mark.asyncio
    async def test_write_raw_bypasses_checks(self, client, store):
        raw = [n.to_dict() for n in make_notes(101)]
        await client.write_raw("browser", raw)
        await client.write_raw("browser", raw)
        assert len(store.writes) == 2
        assert len(store.writes[-1][1]["notes"]) == 101


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_initial_delivery(self, client, ctx):
        received = []
        await client.subscribe_to_scope(NoteScope.PAGE, ctx, received.append)
        assert received == [[]]

    @pytest.mark.asyncio
    async def test_initial_delivery_with_data(self, client, clock, ctx):
        notes = make_notes(2)
        await client.save_notes(NoteScope.PAGE, ctx, notes)
        received = []
        await client.subscribe_to_scope(NoteScope.PAGE, ctx, received.append)
        assert received == [notes]

    @pytest.mark.asyncio
    async def test_change_delivered(self, client, ctx):
        received = []
        await client.subscribe_to_scope(NoteScope.DOMAIN, ctx, received.append)
        notes = make_notes(2)
        await client.save_notes(NoteScope.DOMAIN, ctx, notes)
        assert received == [[], notes]

    @pytest.mark.asyncio
    async def test_other_scopes_not_delivered(self, client, ctx):
        received = []
        await client.subscribe_to_scope(NoteScope.DOMAIN, ctx, received.append)
        await client.save_notes(NoteScope.PAGE, ctx, make_notes(1))
        assert received == [[]]

    @pytest.mark.asyncio
    async def test_change_from_other_device(self, client, store, clock, ctx):
        other_device = RemoteSyncClient("user-1", store, clock=clock)
        received = []
        await client.subscribe_to_scope(NoteScope.BROWSER, ctx, received.append)
        await other_device.save_notes(NoteScope.BROWSER, ctx, make_notes(1))
        assert received[-1] == make_notes(1)

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self, client, store, ctx):
        received = []
        unsubscribe = await client.subscribe_to_scope(NoteScope.DOMAIN, ctx, received.append)
        unsubscribe()
        await client.save_notes(NoteScope.DOMAIN, ctx, make_notes(1))
        assert received == [[]]
        assert store.watcher_count("users/user-1/notes/domain_example.com") == 0

    @pytest.mark.asyncio
    async def test_unsubscribing_first_keeps_second(self, client, store, ctx):
        first, second = [], []
        unsubscribe_first = await client.subscribe_to_scope(NoteScope.PAGE, ctx, first.append)
        await client.subscribe_to_scope(NoteScope.PAGE, ctx, second.append)
        assert store.watcher_count("users/user-1/notes/page_app.example.com~dashboard") == 1

        unsubscribe_first()
        notes = make_notes(1)
        await client.save_notes(NoteScope.PAGE, ctx, notes)

        assert first == [[]]
        assert second == [[], notes]
        assert client.subscription_count(NoteScope.PAGE, ctx) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe_is_idempotent(self, client, ctx):
        second = []
        unsubscribe_first = await client.subscribe_to_scope(NoteScope.PAGE, ctx, lambda notes: None)
        await client.subscribe_to_scope(NoteScope.PAGE, ctx, second.append)
        unsubscribe_first()
        unsubscribe_first()
        assert client.subscription_count(NoteScope.PAGE, ctx) == 1

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_block_others(self, client, ctx):
        def broken(notes):
            raise RuntimeError("boom")

        received = []
        await client.subscribe_to_scope(NoteScope.PAGE, ctx, broken)
        await client.subscribe_to_scope(NoteScope.PAGE, ctx, received.append)
        await client.save_notes(NoteScope.PAGE, ctx, make_notes(1))
        assert received[-1] == make_notes(1)

    @pytest.mark.asyncio
    async def test_subscribe_offline_raises_and_cleans_up(self, client, store, ctx):
        store.offline = True
        with pytest.raises(RemoteUnavailableError):
            await client.subscribe_to_scope(NoteScope.PAGE, ctx, lambda notes: None)
        assert client.subscription_count(NoteScope.PAGE, ctx) == 0

    @pytest.mark.asyncio
    async def test_close_drops_everything(self, client, store, ctx):
        received = []
        await client.subscribe_to_scope(NoteScope.PAGE, ctx, received.append)
        await client.subscribe_to_scope(NoteScope.DOMAIN, ctx, received.append)
        client.close()
        await client.save_notes(NoteScope.PAGE, ctx, make_notes(1))
        assert received == [[], []]
        assert client.subscription_count(NoteScope.PAGE, ctx) == 0
