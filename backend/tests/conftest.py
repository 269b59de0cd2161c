"""
Pytest configuration for Serenity tests.

Every test gets its own in-memory SQLite database and freshly built services;
nothing touches the settings-driven singletons in serenity.api.deps.
"""
from __future__ import annotations

import httpx
import pytest
import pytest_asyncio

from serenity.core.config import Settings, get_settings
from serenity.core.database import build_engine, build_session_factory, get_db, init_db
from serenity.core.kvstore import MemoryKeyValueStore
from serenity.services.candidates import CandidateQueue
from serenity.services.consensus_store import ConsensusStore
from serenity.services.fallback import StaticFallbackDataset
from serenity.services.overrides import OverrideStore
from serenity.services.resolver import ClassificationResolver
from serenity.services.voting import VotingEngine

TOKEN = "test-labeler-token"


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Counter:
    def __init__(self, start: int = 1_700_000_000_000):
        self.value = start

    def __call__(self) -> int:
        self.value += 1
        return self.value


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def engine():
    engine = build_engine("sqlite+aiosqlite://")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def store():
    return ConsensusStore()


@pytest.fixture
def overrides():
    return OverrideStore(MemoryKeyValueStore(), clock=Counter())


@pytest.fixture
def dataset():
    return StaticFallbackDataset(data={"somechannel": "ai_generated", "HumanChannel": "human_created"})


@pytest.fixture
def resolver(overrides, store, session_factory, dataset, clock):
    return ClassificationResolver.build(
        overrides=overrides,
        store=store,
        session_factory=session_factory,
        dataset=dataset,
        ttl=300.0,
        timeout=1.0,
        clock=clock,
    )


@pytest.fixture
def voting_engine(store, session_factory, resolver):
    return VotingEngine(
        store=store,
        session_factory=session_factory,
        on_consensus_change=resolver.invalidate_channel,
        timeout=5.0,
    )


@pytest.fixture
def candidate_queue(store):
    return CandidateQueue(store, batch_size=50)


@pytest.fixture
def settings():
    return Settings(labeler_token=TOKEN, db_url="sqlite+aiosqlite://")


@pytest_asyncio.fixture
async def client(session_factory, settings, overrides, resolver, voting_engine, candidate_queue):
    from serenity.api import deps
    from serenity.main import app

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[deps.get_override_store] = lambda: overrides
    app.dependency_overrides[deps.get_resolver] = lambda: resolver
    app.dependency_overrides[deps.get_voting_engine] = lambda: voting_engine
    app.dependency_overrides[deps.get_candidate_queue] = lambda: candidate_queue

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    return {"X-Manual-Labeler-Token": TOKEN}
