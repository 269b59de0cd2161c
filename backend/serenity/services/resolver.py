"""
Serenity Classification Resolver — turns a channel identifier into a verdict.

Resolution is an ordered chain of lookup tiers; the first tier that answers
wins and later tiers are never consulted:

    1. OverrideTier   manual block/allow         (block → AI, allow → human)
    2. ConsensusTier  latest stored prediction   (TTL-cached, fails open)
    3. FallbackTier   bundled static dataset
    4. nothing        → unknown

Hiding decisions built on top never raise: an outage anywhere degrades to
"unknown", and unknown channels are never hidden.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from serenity.core.cache import DEFAULT_MAX_ENTRIES, Clock, TTLCache
from serenity.core.metrics import FAIL_OPEN, RESOLUTIONS
from serenity.models.models import Channel, Classification, OverrideAction
from serenity.services.consensus_store import ConsensusStore
from serenity.services.fallback import StaticFallbackDataset
from serenity.services.identifiers import normalize_key
from serenity.services.overrides import OverrideStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LookupRequest:
    identifier: str
    channel_id: Optional[str] = None

    @property
    def cache_key(self) -> str:
        return normalize_key(self.channel_id) or normalize_key(self.identifier)


class LookupTier(Protocol):
    name: str

    async def lookup(self, request: LookupRequest) -> Optional[Classification]:
        """Return a classification, or None when this tier has no answer."""


# ═══════════════════════════════════════════════════════════════════════
# Tiers
# ═══════════════════════════════════════════════════════════════════════

OVERRIDE_CLASSIFICATION = {
    OverrideAction.BLOCK: Classification.AI_GENERATED,
    OverrideAction.ALLOW: Classification.HUMAN_CREATED,
}


class OverrideTier:
    name = "override"

    def __init__(self, overrides: OverrideStore):
        self.overrides = overrides

    async def lookup(self, request: LookupRequest) -> Optional[Classification]:
        for candidate in (request.channel_id, request.identifier):
            if not candidate:
                continue
            action = await self.overrides.get(candidate)
            if action is not None:
                return OVERRIDE_CLASSIFICATION[action]
        return None


class ConsensusTier:
    """Latest crowd/model prediction, cached (negative results included)."""

    name = "consensus"

    def __init__(
        self,
        store: ConsensusStore,
        session_factory: async_sessionmaker[AsyncSession],
        cache: TTLCache,
        timeout: float = 5.0,
    ):
        self.store = store
        self.session_factory = session_factory
        self.cache = cache
        self.timeout = timeout

    async def _fetch(self, request: LookupRequest) -> Optional[Classification]:
        async with self.session_factory() as db:
            prediction = await self.store.latest_prediction(
                db,
                identifier=request.identifier,
                channel_id=request.channel_id,
            )
        if prediction is None:
            return None
        return Classification.AI_GENERATED if prediction.is_ai else Classification.HUMAN_CREATED

    async def lookup(self, request: LookupRequest) -> Optional[Classification]:
        key = request.cache_key
        if not key:
            return None

        hit, cached = self.cache.get(key)
        if hit:
            return cached

        try:
            classification = await asyncio.wait_for(self._fetch(request), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Consensus lookup timed out for {key}; treating as unknown")
            FAIL_OPEN.labels(tier=self.name).inc()
            return None
        except Exception as e:
            logger.warning(f"Consensus lookup failed for {key}: {e}")
            FAIL_OPEN.labels(tier=self.name).inc()
            return None

        self.cache.set(key, classification)
        if classification is not None:
            logger.debug(f"Consensus classification for {key}: {classification.value}")
        return classification


class FallbackTier:
    name = "fallback"

    def __init__(self, dataset: StaticFallbackDataset):
        self.dataset = dataset

    async def lookup(self, request: LookupRequest) -> Optional[Classification]:
        return self.dataset.lookup(request.identifier or request.channel_id)


# ═══════════════════════════════════════════════════════════════════════
# Resolver
# ═══════════════════════════════════════════════════════════════════════

class ClassificationResolver:
    def __init__(self, tiers: List[LookupTier], cache: Optional[TTLCache] = None):
        self.tiers = tiers
        self.cache = cache

    @classmethod
    def build(
        cls,
        overrides: OverrideStore,
        store: ConsensusStore,
        session_factory: async_sessionmaker[AsyncSession],
        dataset: StaticFallbackDataset,
        ttl: float = 300.0,
        timeout: float = 5.0,
        clock: Optional[Clock] = None,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ) -> "ClassificationResolver":
        """Standard chain: overrides → consensus (cached) → fallback."""
        cache = TTLCache(ttl=ttl, clock=clock, maxsize=max_entries)
        resolver = cls(
            tiers=[
                OverrideTier(overrides),
                ConsensusTier(store, session_factory, cache, timeout=timeout),
                FallbackTier(dataset),
            ],
            cache=cache,
        )
        overrides.add_listener(resolver.invalidate)
        return resolver

    async def resolve(
        self,
        identifier: Optional[str],
        channel_id: Optional[str] = None,
    ) -> Optional[Classification]:
        request = LookupRequest(identifier=identifier or "", channel_id=channel_id or None)
        if not request.cache_key:
            return None

        for tier in self.tiers:
            try:
                classification = await tier.lookup(request)
            except Exception as e:
                logger.warning(f"{tier.name} tier failed for {request.cache_key}: {e}")
                FAIL_OPEN.labels(tier=tier.name).inc()
                continue
            if classification is not None:
                RESOLUTIONS.labels(tier=tier.name).inc()
                return classification

        RESOLUTIONS.labels(tier="none").inc()
        return None

    async def resolve_many(self, identifiers: Iterable[str]) -> Dict[str, Optional[Classification]]:
        results: Dict[str, Optional[Classification]] = {}
        for identifier in identifiers:
            results[identifier] = await self.resolve(identifier)
        return results

    async def should_hide(
        self,
        identifier: Optional[str],
        hide_ai: bool = True,
        hide_ai_assisted: bool = False,
        hide_mixed: bool = False,
        channel_id: Optional[str] = None,
    ) -> bool:
        try:
            classification = await self.resolve(identifier, channel_id)
        except Exception as e:
            logger.error(f"Resolution failed for {identifier!r}; not hiding: {e}")
            FAIL_OPEN.labels(tier="resolver").inc()
            return False
        return hide_decision(classification, hide_ai, hide_ai_assisted, hide_mixed)

    # ── Cache invalidation ───────────────────────────────────────────────

    def invalidate(self, key: Optional[str] = None) -> None:
        if self.cache is None:
            return
        if key is None:
            self.cache.clear()
            return
        self.cache.delete(normalize_key(key))

    def invalidate_channel(self, channel: Channel) -> None:
        """
        Drop every cache key a channel can be reached by. Without a known
        YouTube channel ID, callers may have cached it under an unseen "UC…"
        key, so the whole cache goes.
        """
        if not channel.youtube_channel_id:
            self.invalidate()
            return
        for key in (channel.identifier, channel.youtube_channel_id, channel.handle):
            if key:
                self.invalidate(key)


def hide_decision(
    classification: Optional[Classification],
    hide_ai: bool,
    hide_ai_assisted: bool,
    hide_mixed: bool,
) -> bool:
    if classification is None:
        return False
    decisions = {
        Classification.AI_GENERATED: hide_ai,
        Classification.AI_ASSISTED: hide_ai_assisted,
        Classification.MIXED: hide_mixed,
        Classification.HUMAN_CREATED: False,
        Classification.UNKNOWN: False,
    }
    return decisions[classification]
