"""Shared fixtures for the bizsite test suite."""

import asyncio
from datetime import datetime, timezone

import pytest

from bizsite.cache import TTLCache
from bizsite.editor import ProfileEditor
from bizsite.errors import TransientIOError
from bizsite.generator import SiteGenerator
from bizsite.renderer import ClientRenderer
from bizsite.repository import ProfileRepository
from bizsite.stores import MemoryAuthProvider, MemoryBlobStore, MemoryDocumentStore

FIXED_NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FailingDocumentStore(MemoryDocumentStore):
    """Memory store whose writes fail while ``failing`` is set."""

    def __init__(self, seed=None):
        super().__init__(seed)
        self.failing = False

    async def update(self, collection, doc_id, paths):
        if self.failing:
            raise TransientIOError("document store unavailable")
        await super().update(collection, doc_id, paths)


class FakeMonotonic:
    """Controllable stand-in for time.monotonic."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingBlobStore(MemoryBlobStore):
    def __init__(self):
        super().__init__()
        self.resolve_calls = 0

    async def resolve(self, ref):
        self.resolve_calls += 1
        return await super().resolve(ref)


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

@pytest.fixture
def store():
    return FailingDocumentStore()


@pytest.fixture
def blobs():
    return MemoryBlobStore()


@pytest.fixture
def auth():
    return MemoryAuthProvider()


@pytest.fixture
def owner(auth):
    """Signed-in owner identity."""
    session = asyncio.run(auth.sign_up("chef@example.com", "secret"))
    return session.identity


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def repository(store, monotonic):
    return ProfileRepository(store, cache=TTLCache(300, clock=monotonic), clock=lambda: FIXED_NOW)


@pytest.fixture
def editor(repository, blobs, auth, owner, monotonic):
    return ProfileEditor(repository, blobs, auth, clock=lambda: FIXED_NOW, monotonic=monotonic)


@pytest.fixture
def bistro(editor):
    """Registered restaurant 'le-bistro' with a name and one daily-menu dish."""
    async def build():
        await editor.register("le-bistro", "restaurant")
        await editor.submit("basicInfo", {
            "name": "Le Bistro",
            "phone": "01 23 45 67 89",
            "hours": {"monday": "09:00-12:00,14:00-18:00", "sunday": "closed"},
        })
        await editor.submit("dailyMenu", {
            "enabled": True,
            "items": [{"name": "Soupe", "price": "6"}],
        })
        return editor.profile

    return asyncio.run(build())


@pytest.fixture
def renderer(blobs):
    return ClientRenderer(blob_store=blobs)


@pytest.fixture
def generator(repository, renderer):
    return SiteGenerator(repository=repository, renderer=renderer, clock=lambda: FIXED_NOW)
