"""Shared cache-layer test fixtures.

Factory-pattern fixtures that return callables accepting **overrides, plus
fakes for the three things the cache layer waits on: the network (FakeRemote),
time (FakeClock) and backoff sleeps (SleepRecorder).

Fixtures:
    fake_remote: Dict-backed query_fn with call counts and scripted failures
    clock: Manually advanced monotonic clock
    sleeps: Records backoff delays instead of sleeping
    make_client: Factory for QueryClient instances wired to the fakes
    make_settings: Factory for Settings without touching the environment
    stub_store: Seeded InMemoryRemoteStore (classroom c1, students s1/s2)
    services: BizCoinServices bound to c1, talking to the stub over ASGI
"""

import asyncio
import copy
from collections import Counter, defaultdict
from typing import Any

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport

from bizcoin.cache.client import QueryClient
from bizcoin.cache.keys import QueryKey
from bizcoin.config import Settings
from bizcoin.errors import ApiRequestError
from bizcoin.hooks.remote_stub import InMemoryRemoteStore, create_stub_app
from bizcoin.services import create_services


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeRemote:
    """Stands in for RemoteStoreClient.query_fn().

    data maps keys to server truth; failures queues exceptions per key.
    If gate is set, every fetch waits on it (for in-flight race tests).
    """

    def __init__(self) -> None:
        self.data: dict[QueryKey, Any] = {}
        self.calls: Counter[QueryKey] = Counter()
        self.failures: dict[QueryKey, list[Exception]] = defaultdict(list)
        self.gate: asyncio.Event | None = None

    async def __call__(self, key: QueryKey) -> Any:
        self.calls[key] += 1
        await asyncio.sleep(0)
        if self.gate is not None:
            await self.gate.wait()
        if self.failures[key]:
            raise self.failures[key].pop(0)
        if key not in self.data:
            raise ApiRequestError(404, "Not found")
        return copy.deepcopy(self.data[key])


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Records requested delays and yields once instead of sleeping."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def fake_remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


# ---------------------------------------------------------------------------
# QueryClient factory
# ---------------------------------------------------------------------------


@pytest.fixture
def make_client(fake_remote, clock, sleeps):
    """Returns a factory for QueryClient instances wired to the fakes.

    Override query_fn, default_config, clock or sleep via kwargs.
    """

    def _make(**overrides) -> QueryClient:
        kwargs = {"clock": clock, "sleep": sleeps}
        kwargs.update(overrides)
        query_fn = kwargs.pop("query_fn", fake_remote)
        return QueryClient(query_fn, **kwargs)

    return _make


# ---------------------------------------------------------------------------
# Settings factory
# ---------------------------------------------------------------------------


@pytest.fixture
def make_settings():
    """Returns a factory for Settings instances with test defaults."""

    def _make(**overrides) -> Settings:
        defaults = {
            "log_level": "warning",
            "api_base_url": "http://test",
            "request_timeout": 5.0,
            "token_path": "",
            "cache_profile": "",
        }
        defaults.update(overrides)
        return Settings(**defaults)

    return _make


# ---------------------------------------------------------------------------
# Stub Remote Store
# ---------------------------------------------------------------------------


@pytest.fixture
def stub_store() -> InMemoryRemoteStore:
    """Classroom c1 with s1 (10 tokens) and s2 (30 tokens), two store items,
    one assignment. s1 is the signed-in student. Classroom c2 has s3.
    """
    store = InMemoryRemoteStore()
    store.add_classroom("c1", "Period 1")
    store.add_student("s1", "c1", tokens=10)
    store.add_student("s2", "c1", tokens=30)
    store.add_student("s3", "c2", tokens=50)
    store.add_store_item("c1", "pencil", cost=5)
    store.add_store_item("c1", "trophy", cost=100)
    store.add_assignment("a1", "c1", "Essay")
    store.current_student_id = "s1"
    return store


@pytest_asyncio.fixture
async def services(stub_store, make_settings, clock, sleeps):
    """BizCoinServices bound to classroom c1, talking to the stub over ASGI."""
    transport = ASGITransport(app=create_stub_app(stub_store), raise_app_exceptions=False)
    built = create_services(
        make_settings(),
        transport=transport,
        classroom_id="c1",
        clock=clock,
        sleep=sleeps,
    )
    yield built
    await built.aclose()


@pytest.fixture
def asgi_client(stub_store) -> httpx.AsyncClient:
    """Raw async HTTP client against the stub app."""
    transport = ASGITransport(app=create_stub_app(stub_store), raise_app_exceptions=False)
    return httpx.AsyncClient(transport=transport, base_url="http://test")
