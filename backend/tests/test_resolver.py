import asyncio

import pytest

from serenity.core.errors import PersistenceError
from serenity.models.models import Channel, Classification
from serenity.services.consensus_store import ConsensusStore
from serenity.services.resolver import ClassificationResolver, LookupRequest, hide_decision


class CountingStore(ConsensusStore):
    def __init__(self):
        self.reads = 0

    async def latest_prediction(self, db, identifier=None, channel_id=None):
        self.reads += 1
        return await super().latest_prediction(db, identifier=identifier, channel_id=channel_id)


class FailingStore(ConsensusStore):
    def __init__(self):
        self.reads = 0

    async def latest_prediction(self, db, identifier=None, channel_id=None):
        self.reads += 1
        raise PersistenceError("database unreachable")


class SlowStore(ConsensusStore):
    async def latest_prediction(self, db, identifier=None, channel_id=None):
        await asyncio.sleep(5)


class BrokenTier:
    name = "broken"

    async def lookup(self, request):
        raise RuntimeError("boom")


class StaticTier:
    name = "static"

    def __init__(self, value):
        self.value = value

    async def lookup(self, request):
        return self.value


async def log_prediction(session_factory, store, identifier, is_ai, confidence=0.9):
    async with session_factory() as db:
        await store.log_prediction(db, identifier, is_ai, confidence, "consensus-v1")
        await db.commit()


def build(overrides, store, session_factory, dataset, clock, timeout=1.0):
    return ClassificationResolver.build(
        overrides=overrides,
        store=store,
        session_factory=session_factory,
        dataset=dataset,
        ttl=300.0,
        timeout=timeout,
        clock=clock,
    )


async def test_end_to_end_fallback_then_override(resolver, overrides):
    assert await resolver.resolve("@SomeChannel") == Classification.AI_GENERATED
    assert await resolver.should_hide("@SomeChannel") is True

    await overrides.set("somechannel", "allow")

    assert await resolver.resolve("@SomeChannel") == Classification.HUMAN_CREATED
    assert await resolver.should_hide("@SomeChannel") is False


async def test_override_allow_beats_ai_prediction(resolver, overrides, store, session_factory):
    await log_prediction(session_factory, store, "aichannel", is_ai=True)
    assert await resolver.resolve("aichannel") == Classification.AI_GENERATED

    await overrides.set("aichannel", "allow")
    assert await resolver.resolve("aichannel") == Classification.HUMAN_CREATED


async def test_override_block_hides(resolver, overrides):
    await overrides.set("unknownchannel", "block")
    assert await resolver.resolve("@UnknownChannel") == Classification.AI_GENERATED


async def test_channel_id_override_is_checked_first(resolver, overrides):
    channel_id = "UC" + "x" * 22
    await overrides.set(channel_id, "block")
    await overrides.set("somehandle", "allow")

    assert await resolver.resolve("somehandle", channel_id=channel_id) == Classification.AI_GENERATED


async def test_prediction_beats_fallback(resolver, store, session_factory):
    await log_prediction(session_factory, store, "somechannel", is_ai=False)
    assert await resolver.resolve("@SomeChannel") == Classification.HUMAN_CREATED


async def test_prediction_found_by_channel_id(resolver, store, session_factory):
    channel_id = "UC" + "y" * 22
    await log_prediction(session_factory, store, channel_id, is_ai=True)

    assert await resolver.resolve("", channel_id=channel_id) == Classification.AI_GENERATED


async def test_cache_reads_store_once_within_ttl(overrides, session_factory, dataset, clock):
    store = CountingStore()
    resolver = build(overrides, store, session_factory, dataset, clock)

    await resolver.resolve("nochannel")
    await resolver.resolve("@NoChannel")
    assert store.reads == 1

    resolver.invalidate("nochannel")
    await resolver.resolve("nochannel")
    assert store.reads == 2

    clock.advance(301)
    await resolver.resolve("nochannel")
    assert store.reads == 3


async def test_cached_negative_result_is_dropped_on_invalidate_channel(overrides, session_factory, dataset, clock):
    store = CountingStore()
    resolver = build(overrides, store, session_factory, dataset, clock)
    assert await resolver.resolve("newchannel") is None

    await log_prediction(session_factory, store, "newchannel", is_ai=True)
    assert await resolver.resolve("newchannel") is None

    async with session_factory() as db:
        channel = await store.find_channel(db, identifier="newchannel")
    resolver.invalidate_channel(channel)
    assert await resolver.resolve("newchannel") == Classification.AI_GENERATED


async def test_store_failure_fails_open(overrides, session_factory, dataset, clock):
    store = FailingStore()
    resolver = build(overrides, store, session_factory, dataset, clock)

    assert await resolver.should_hide("nochannel") is False
    assert await resolver.resolve("nochannel") is None
    # Failures are not cached
    assert store.reads == 2
    # Later tiers still answer
    assert await resolver.resolve("somechannel") == Classification.AI_GENERATED


async def test_store_timeout_fails_open(overrides, session_factory, dataset, clock):
    resolver = build(overrides, SlowStore(), session_factory, dataset, clock, timeout=0.05)

    assert await resolver.should_hide("nochannel") is False
    assert await resolver.resolve("somechannel") == Classification.AI_GENERATED


async def test_broken_tier_is_skipped():
    resolver = ClassificationResolver(tiers=[BrokenTier(), StaticTier(Classification.MIXED)])

    assert await resolver.resolve("anything") == Classification.MIXED
    assert await resolver.should_hide("anything", hide_mixed=True) is True


async def test_blank_identifier_resolves_to_unknown(resolver):
    assert await resolver.resolve("") is None
    assert await resolver.resolve(None) is None
    assert await resolver.should_hide("   ") is False


async def test_resolve_many(resolver, overrides):
    await overrides.set("blocked", "block")

    results = await resolver.resolve_many(["@SomeChannel", "blocked", "nothing"])

    assert results == {
        "@SomeChannel": Classification.AI_GENERATED,
        "blocked": Classification.AI_GENERATED,
        "nothing": None,
    }


def test_lookup_request_cache_key_prefers_channel_id():
    assert LookupRequest("@Handle", "UCabc").cache_key == "ucabc"
    assert LookupRequest("@Handle").cache_key == "handle"


@pytest.mark.parametrize(
    "classification, flags, expected",
    [
        (Classification.AI_GENERATED, (True, False, False), True),
        (Classification.AI_GENERATED, (False, True, True), False),
        (Classification.AI_ASSISTED, (True, False, False), False),
        (Classification.AI_ASSISTED, (False, True, False), True),
        (Classification.MIXED, (False, False, True), True),
        (Classification.MIXED, (True, True, False), False),
        (Classification.HUMAN_CREATED, (True, True, True), False),
        (Classification.UNKNOWN, (True, True, True), False),
        (None, (True, True, True), False),
    ],
)
def test_hide_decision(classification, flags, expected):
    assert hide_decision(classification, *flags) is expected


def test_invalidate_channel_scope(resolver):
    resolver.cache.set("other", None)
    resolver.cache.set("uc" + "k" * 22, None)
    resolver.cache.set("known", None)

    resolver.invalidate_channel(Channel(identifier="known", youtube_channel_id="UC" + "k" * 22, handle="Known"))
    assert "known" not in resolver.cache
    assert "uc" + "k" * 22 not in resolver.cache
    assert "other" in resolver.cache

    # Handle-only channels may be cached under any channel ID key
    resolver.invalidate_channel(Channel(identifier="handleonly", handle="HandleOnly"))
    assert len(resolver.cache) == 0
