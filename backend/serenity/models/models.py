"""
Serenity ORM Models — channels, crowd votes, voter reputation, predictions.

Column types are dialect-neutral so the same schema runs on PostgreSQL and
SQLite.
"""
from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON, Boolean, DateTime, Float, ForeignKey, Index,
    String, Text, Uuid, func,
)
from sqlalchemy.orm import Mapped, mapped_column

from serenity.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════

class Classification(str, enum.Enum):
    AI_GENERATED = "ai_generated"
    HUMAN_CREATED = "human_created"
    AI_ASSISTED = "ai_assisted"
    MIXED = "mixed"
    UNKNOWN = "unknown"


class OverrideAction(str, enum.Enum):
    BLOCK = "block"
    ALLOW = "allow"


# ═══════════════════════════════════════════════════════════════════════
# Channels
# ═══════════════════════════════════════════════════════════════════════

class Channel(Base):
    __tablename__ = "channels"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # Normalized, lower-cased lookup key (handle or channel ID)
    identifier: Mapped[str] = mapped_column(String(256), unique=True, index=True)
    youtube_channel_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    handle: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)

    title: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sample_video_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    sample_thumbnail: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    sample_title: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    sample_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow)


# Fields that can be filled in from labeler metadata
CHANNEL_METADATA_FIELDS = (
    "handle",
    "title",
    "description",
    "sample_video_id",
    "sample_thumbnail",
    "sample_title",
    "sample_description",
)


# ═══════════════════════════════════════════════════════════════════════
# Crowd Voting
# ═══════════════════════════════════════════════════════════════════════

class VoterReputation(Base):
    __tablename__ = "voter_reputation"

    voter_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    # Administrative input; the voting engine only reads it
    is_shadow_banned: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow)


class ChannelVote(Base):
    __tablename__ = "channel_votes"
    __table_args__ = (
        Index("ix_votes_channel", "channel_id"),
        Index("ix_votes_voter", "voter_id"),
        Index("ix_votes_channel_shadow", "channel_id", "is_shadow_banned"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    channel_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("channels.id", ondelete="CASCADE"))
    voter_id: Mapped[str] = mapped_column(ForeignKey("voter_reputation.voter_id"))
    is_ai: Mapped[bool] = mapped_column(Boolean)
    weight: Mapped[float] = mapped_column(Float)
    # Snapshot of the voter's reputation when the vote was cast
    is_shadow_banned: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now())


class ChannelPrediction(Base):
    """Append-only classification log. Latest row per channel wins."""
    __tablename__ = "channel_predictions"
    __table_args__ = (
        Index("ix_predictions_channel_created", "channel_id", "created_at"),
        Index("ix_predictions_is_ai", "is_ai"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    channel_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("channels.id", ondelete="CASCADE"))
    is_ai: Mapped[bool] = mapped_column(Boolean)
    confidence: Mapped[float] = mapped_column(Float, default=0.0)
    model_version: Mapped[str] = mapped_column(String(64))
    context: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
