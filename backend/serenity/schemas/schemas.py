"""
Serenity API Schemas — Pydantic v2 models for request/response validation.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool

from serenity.models.models import Classification, OverrideAction


# ═══════════════════════════════════════════════════════════════════════
# Labeler
# ═══════════════════════════════════════════════════════════════════════

class VoteRequest(BaseModel):
    """Every field is optional here; the voting engine reports what is missing."""
    model_config = ConfigDict(extra="ignore")

    channel_id: Optional[str] = None
    identifier: Optional[str] = None
    voter_id: Optional[str] = None
    is_ai: Optional[StrictBool] = None
    metadata: Optional[Dict[str, Any]] = None


class VoteResponse(BaseModel):
    success: bool
    weight_assigned: Optional[float] = None
    error: Optional[str] = None


class CandidateItemSchema(BaseModel):
    id: str
    identifier: str
    handle: Optional[str] = None
    title: Optional[str] = None
    sample_video_id: Optional[str] = None
    sample_thumbnail: Optional[str] = None
    sample_title: Optional[str] = None
    sample_description: Optional[str] = None


class NextCandidateResponse(BaseModel):
    ok: bool
    item: Optional[CandidateItemSchema] = None
    error: Optional[str] = None


class ShadowBanUpdate(BaseModel):
    is_shadow_banned: bool


class VoterSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    voter_id: str
    is_shadow_banned: bool
    updated_at: Optional[datetime] = None


# ═══════════════════════════════════════════════════════════════════════
# Overrides
# ═══════════════════════════════════════════════════════════════════════

class OverrideUpsert(BaseModel):
    action: OverrideAction
    handle: Optional[str] = Field(None, max_length=256)


class OverrideSchema(BaseModel):
    identifier: str
    action: OverrideAction
    timestamp: int
    handle: Optional[str] = None


class OverrideListResponse(BaseModel):
    overrides: List[OverrideSchema]
    total: int


# ═══════════════════════════════════════════════════════════════════════
# Classification
# ═══════════════════════════════════════════════════════════════════════

class ClassificationResponse(BaseModel):
    identifier: str
    channel_id: Optional[str] = None
    classification: Classification
    hidden: bool


class BatchClassificationResponse(BaseModel):
    classifications: Dict[str, Classification]


class BlockedChannel(BaseModel):
    channel_id: str
    identifier: str
    youtube_channel_id: Optional[str] = None
    handle: Optional[str] = None
    title: Optional[str] = None
    url: str
    confidence: float
    model_version: str
    predicted_at: Optional[datetime] = None


class BlockedChannelsResponse(BaseModel):
    channels: List[BlockedChannel]
    total: int
