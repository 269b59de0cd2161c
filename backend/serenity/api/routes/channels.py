"""
Serenity API — Channel routes.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from serenity.core.database import get_db
from serenity.schemas.schemas import BlockedChannel, BlockedChannelsResponse
from serenity.services.consensus_store import consensus_store
from serenity.services.identifiers import build_channel_url

router = APIRouter(prefix="/channels", tags=["Channels"])


@router.get("/blocked", response_model=BlockedChannelsResponse)
async def list_blocked_channels(
    limit: int = Query(100, ge=1, le=1000),
    min_confidence: float = Query(0.0, ge=0.0, le=1.0),
    db: AsyncSession = Depends(get_db),
):
    """Channels whose most recent prediction is AI, newest first."""
    rows = await consensus_store.list_blocked_channels(db, limit=limit, min_confidence=min_confidence)
    channels = [
        BlockedChannel(
            **row,
            url=build_channel_url(row["youtube_channel_id"] or row["handle"] or row["identifier"]),
        )
        for row in rows
    ]
    return BlockedChannelsResponse(channels=channels, total=len(channels))
