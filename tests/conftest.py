"""Shared test fixtures."""

import pytest

from reactive_kv import ReactiveStore
from reactive_kv.exceptions import StorageFullError
from reactive_kv.stores import InMemoryStore


class FlakyStore(InMemoryStore):
    """InMemoryStore whose next ``failures`` writes raise StorageFullError."""

    def __init__(self, failures: int = 0, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures
        self.writes: list[str] = []

    def _maybe_fail(self, operation: str) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise StorageFullError(operation, "simulated quota")

    async def set_item(self, key, value):
        self._maybe_fail("set_item")
        self.writes.append("set_item")
        await super().set_item(key, value)

    async def multi_set(self, entries):
        self._maybe_fail("multi_set")
        self.writes.append("multi_set")
        await super().multi_set(entries)

    async def multi_merge(self, entries):
        self._maybe_fail("multi_merge")
        self.writes.append("multi_merge")
        await super().multi_merge(entries)


class Recorder:
    """Callback that remembers every ``(value, key)`` it was called with."""

    def __init__(self):
        self.calls: list[tuple] = []

    def __call__(self, value, key):
        self.calls.append((value, key))

    @property
    def values(self):
        return [value for value, _key in self.calls]


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def make_recorder():
    return Recorder


@pytest.fixture
async def make_kv():
    created = []

    async def _make(store=None, **options):
        kv = ReactiveStore(store=store if store is not None else FlakyStore())
        await kv.init(**options)
        created.append(kv)
        return kv

    yield _make
    for kv in created:
        await kv.teardown()


@pytest.fixture
async def kv(store):
    engine = ReactiveStore(store=store)
    await engine.init(
        keys=["session", "account"],
        collection_keys=["test_", "report_"],
        initial_key_states={"session": {"loggedIn": False}},
        safe_eviction_keys=["test_"],
    )
    yield engine
    await engine.teardown()
