"""
Serenity API — shared service instances and request guards.

Services are built lazily on first use from settings. Tests swap them
through `app.dependency_overrides`.
"""
from __future__ import annotations

import secrets
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header

from serenity.core.config import Settings, get_settings
from serenity.core.database import get_session_factory
from serenity.core.errors import AuthError
from serenity.core.kvstore import JsonFileKeyValueStore
from serenity.services.candidates import CandidateQueue
from serenity.services.consensus_store import consensus_store
from serenity.services.fallback import StaticFallbackDataset
from serenity.services.overrides import OverrideStore
from serenity.services.resolver import ClassificationResolver
from serenity.services.voting import VotingEngine

TOKEN_HEADER = "X-Manual-Labeler-Token"


@lru_cache()
def get_override_store() -> OverrideStore:
    settings = get_settings()
    return OverrideStore(JsonFileKeyValueStore(settings.overrides_file))


@lru_cache()
def get_fallback_dataset() -> StaticFallbackDataset:
    return StaticFallbackDataset(get_settings().channel_data_file)


@lru_cache()
def get_resolver() -> ClassificationResolver:
    settings = get_settings()
    return ClassificationResolver.build(
        overrides=get_override_store(),
        store=consensus_store,
        session_factory=get_session_factory(),
        dataset=get_fallback_dataset(),
        ttl=settings.classification_cache_ttl_seconds,
        max_entries=settings.classification_cache_max_entries,
        timeout=settings.db_timeout_seconds,
    )


@lru_cache()
def get_voting_engine() -> VotingEngine:
    settings = get_settings()
    return VotingEngine(
        store=consensus_store,
        session_factory=get_session_factory(),
        on_consensus_change=get_resolver().invalidate_channel,
        timeout=settings.db_timeout_seconds,
        weight_floor=settings.vote_weight_floor,
        weight_decay=settings.vote_weight_decay,
        ai_threshold=settings.consensus_ai_threshold,
        model_version=settings.consensus_model_version,
    )


@lru_cache()
def get_candidate_queue() -> CandidateQueue:
    return CandidateQueue(consensus_store, batch_size=get_settings().candidate_batch_size)


# ── Auth ─────────────────────────────────────────────────────────────────

def verify_labeler_token(token: Optional[str], settings: Settings) -> None:
    """Constant-time token check. An unset server token rejects everything."""
    expected = settings.labeler_token
    if not expected:
        raise AuthError("Labeler endpoints are disabled: no server token configured")
    if not token or not secrets.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        raise AuthError("Unauthorized")


async def require_labeler_token(
    token: Optional[str] = Header(None, alias=TOKEN_HEADER),
    settings: Settings = Depends(get_settings),
) -> None:
    """Guard for routes that report errors through the app-wide handler."""
    verify_labeler_token(token, settings)
