"""
Serenity API — Classification routes.

Read-only and fail-open: an outage anywhere answers "unknown", not hidden.
"""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from serenity.api.deps import get_resolver
from serenity.models.models import Classification
from serenity.schemas.schemas import BatchClassificationResponse, ClassificationResponse
from serenity.services.resolver import ClassificationResolver, hide_decision

router = APIRouter(prefix="/classification", tags=["Classification"])


@router.get("", response_model=ClassificationResponse)
async def classify_channel(
    identifier: str = Query("", max_length=512),
    channel_id: Optional[str] = Query(None, max_length=128),
    hide_ai: bool = Query(True),
    hide_ai_assisted: bool = Query(False),
    hide_mixed: bool = Query(False),
    resolver: ClassificationResolver = Depends(get_resolver),
):
    """Classification for one channel plus whether these preferences hide it."""
    classification = await resolver.resolve(identifier, channel_id)
    return ClassificationResponse(
        identifier=identifier,
        channel_id=channel_id,
        classification=classification or Classification.UNKNOWN,
        hidden=hide_decision(classification, hide_ai, hide_ai_assisted, hide_mixed),
    )


@router.get("/batch", response_model=BatchClassificationResponse)
async def classify_channels(
    identifiers: List[str] = Query(...),
    resolver: ClassificationResolver = Depends(get_resolver),
):
    results = await resolver.resolve_many(identifiers)
    return BatchClassificationResponse(
        classifications={k: v or Classification.UNKNOWN for k, v in results.items()},
    )
