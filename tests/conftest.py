"""Shared fixtures: fake clock, stores and URL contexts."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from marginalia.identity import StaticIdentity
from marginalia.notes.context import parse_url_context
from marginalia.notes.types import UrlContext
from marginalia.storage.cache import LocalCache
from marginalia.storage.memory import InMemoryDocumentStore
from marginalia.sync.migration import MIGRATION_FLAG


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now: float = 10_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore(clock=lambda: 1_700_000_000_000)


@pytest.fixture
def identity() -> StaticIdentity:
    return StaticIdentity("user-1")


@pytest.fixture
def cache(tmp_path: Path) -> LocalCache:
    """Cache whose legacy migration has already run."""
    root = tmp_path / "data"
    root.mkdir()
    (root / LocalCache.FILENAME).write_text(json.dumps({MIGRATION_FLAG: True}))
    return LocalCache(root)


@pytest.fixture
def fresh_cache(tmp_path: Path) -> LocalCache:
    """Empty cache, migration not yet run."""
    return LocalCache(tmp_path / "fresh")


@pytest.fixture
def ctx() -> UrlContext:
    context = parse_url_context("https://app.example.com/dashboard?id=123")
    assert context is not None
    return context


@pytest.fixture
def plain_ctx() -> UrlContext:
    context = parse_url_context("https://example.com/test")
    assert context is not None
    return context
