"""
Serenity Consensus Store — durable channels, votes, voter reputation and
the append-only prediction log.

Every method takes the caller's AsyncSession; transaction boundaries belong
to the caller. SQLAlchemy failures surface as PersistenceError.
"""
from __future__ import annotations

import functools
import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from serenity.core.errors import PersistenceError, ValidationError
from serenity.models.models import (
    CHANNEL_METADATA_FIELDS,
    Channel,
    ChannelPrediction,
    ChannelVote,
    VoterReputation,
)
from serenity.services.identifiers import (
    clean_metadata_value,
    is_channel_id,
    normalize,
    normalize_key,
)

logger = logging.getLogger(__name__)

# Labeler clients send the channel title under this name
METADATA_ALIASES = {"channel_title": "title"}


def translate_db_errors(fn):
    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except SQLAlchemyError as e:
            raise PersistenceError(f"{fn.__name__} failed: {e}") from e
    return wrapper


def merge_channel_metadata(channel: Channel, metadata: Optional[Mapping[str, Any]]) -> List[str]:
    """
    Copy non-empty metadata onto the channel. Placeholders such as
    "(unknown)" count as empty and never replace a stored value.
    Returns the names of the fields that changed.
    """
    if not metadata:
        return []
    changed: List[str] = []
    for raw_name, raw_value in metadata.items():
        name = METADATA_ALIASES.get(raw_name, raw_name)
        if name not in CHANNEL_METADATA_FIELDS:
            continue
        value = clean_metadata_value(raw_value)
        if value is None:
            continue
        if name == "handle":
            value = normalize(value) or None
            if value is None:
                continue
        if getattr(channel, name) != value:
            setattr(channel, name, value)
            changed.append(name)
    return changed


class ConsensusStore:
    """Query/command helpers over the channels, votes and predictions tables."""

    # ── Channels ─────────────────────────────────────────────────────────

    @translate_db_errors
    async def get_channel(self, db: AsyncSession, channel_uuid: uuid.UUID) -> Optional[Channel]:
        return await db.get(Channel, channel_uuid)

    @translate_db_errors
    async def find_channel(
        self,
        db: AsyncSession,
        identifier: Optional[str] = None,
        channel_id: Optional[str] = None,
    ) -> Optional[Channel]:
        """Look a channel up by YouTube channel ID first, then by identifier/handle."""
        for key in (normalize_key(channel_id), normalize_key(identifier)):
            if not key:
                continue
            stmt = (
                select(Channel)
                .where(or_(Channel.identifier == key, func.lower(Channel.handle) == key))
                .order_by(case((Channel.identifier == key, 0), else_=1))
                .limit(1)
            )
            channel = (await db.execute(stmt)).scalars().first()
            if channel is not None:
                return channel
        return None

    @translate_db_errors
    async def get_or_create_channel(
        self,
        db: AsyncSession,
        identifier: str,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Channel:
        display = normalize(identifier)
        key = display.lower()
        if not key:
            raise ValidationError("channel identifier is required")

        channel = (
            await db.execute(select(Channel).where(Channel.identifier == key))
        ).scalars().first()
        if channel is None:
            if is_channel_id(display):
                channel = Channel(identifier=key, youtube_channel_id=display)
            else:
                channel = Channel(identifier=key, handle=display)
            db.add(channel)
            logger.info(f"Created channel record for {key}")

        merge_channel_metadata(channel, metadata)
        await db.flush()
        return channel

    # ── Voters ───────────────────────────────────────────────────────────

    @translate_db_errors
    async def get_or_create_voter(self, db: AsyncSession, voter_id: str) -> VoterReputation:
        voter = await db.get(VoterReputation, voter_id)
        if voter is None:
            voter = VoterReputation(voter_id=voter_id, is_shadow_banned=False)
            db.add(voter)
            await db.flush()
        return voter

    @translate_db_errors
    async def set_shadow_banned(self, db: AsyncSession, voter_id: str, flag: bool) -> VoterReputation:
        """Administrative input. Past votes keep the flag they were cast with."""
        voter_id = (voter_id or "").strip()
        if not voter_id:
            raise ValidationError("voter_id is required")
        voter = await self.get_or_create_voter(db, voter_id)
        voter.is_shadow_banned = flag
        await db.flush()
        logger.info(f"Voter {voter_id} shadow_banned={flag}")
        return voter

    # ── Votes ────────────────────────────────────────────────────────────

    @translate_db_errors
    async def count_votes(self, db: AsyncSession, channel_uuid: uuid.UUID) -> int:
        total = await db.scalar(
            select(func.count(ChannelVote.id)).where(ChannelVote.channel_id == channel_uuid)
        )
        return total or 0

    @translate_db_errors
    async def add_vote(
        self,
        db: AsyncSession,
        channel: Channel,
        voter: VoterReputation,
        is_ai: bool,
        weight: float,
    ) -> ChannelVote:
        vote = ChannelVote(
            channel_id=channel.id,
            voter_id=voter.voter_id,
            is_ai=is_ai,
            weight=weight,
            is_shadow_banned=voter.is_shadow_banned,
        )
        db.add(vote)
        await db.flush()
        return vote

    @translate_db_errors
    async def active_votes(self, db: AsyncSession, channel_uuid: uuid.UUID) -> List[ChannelVote]:
        """Votes that count toward consensus (shadow-banned rows excluded)."""
        result = await db.execute(
            select(ChannelVote).where(
                ChannelVote.channel_id == channel_uuid,
                ChannelVote.is_shadow_banned.is_(False),
            )
        )
        return list(result.scalars().all())

    @translate_db_errors
    async def unvoted_channels(self, db: AsyncSession, voter_id: str, limit: int) -> List[Channel]:
        voted = select(ChannelVote.channel_id).where(ChannelVote.voter_id == voter_id)
        result = await db.execute(
            select(Channel).where(Channel.id.not_in(voted)).limit(limit)
        )
        return list(result.scalars().all())

    # ── Predictions ──────────────────────────────────────────────────────

    @translate_db_errors
    async def append_prediction(
        self,
        db: AsyncSession,
        channel_uuid: uuid.UUID,
        is_ai: bool,
        confidence: float,
        model_version: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> ChannelPrediction:
        prediction = ChannelPrediction(
            channel_id=channel_uuid,
            is_ai=is_ai,
            confidence=confidence,
            model_version=model_version,
            context=context,
        )
        db.add(prediction)
        await db.flush()
        return prediction

    @translate_db_errors
    async def latest_prediction_for(self, db: AsyncSession, channel_uuid: uuid.UUID) -> Optional[ChannelPrediction]:
        result = await db.execute(
            select(ChannelPrediction)
            .where(ChannelPrediction.channel_id == channel_uuid)
            .order_by(ChannelPrediction.created_at.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def latest_prediction(
        self,
        db: AsyncSession,
        identifier: Optional[str] = None,
        channel_id: Optional[str] = None,
    ) -> Optional[ChannelPrediction]:
        channel = await self.find_channel(db, identifier=identifier, channel_id=channel_id)
        if channel is None:
            return None
        return await self.latest_prediction_for(db, channel.id)

    async def log_prediction(
        self,
        db: AsyncSession,
        identifier: str,
        is_ai: bool,
        confidence: float,
        model_version: str,
        handle: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> ChannelPrediction:
        """Record a prediction produced outside the voting engine (e.g. a model run)."""
        if not 0.0 <= confidence <= 1.0:
            raise ValidationError("confidence must be within [0, 1]")
        channel = await self.get_or_create_channel(
            db, identifier, metadata={"handle": handle} if handle else None
        )
        return await self.append_prediction(
            db, channel.id, is_ai, confidence, model_version, context=context
        )

    @translate_db_errors
    async def list_blocked_channels(
        self,
        db: AsyncSession,
        limit: int = 100,
        min_confidence: float = 0.0,
    ) -> List[Dict[str, Any]]:
        """Channels whose latest prediction says AI, newest first."""
        latest = (
            select(
                ChannelPrediction.channel_id,
                func.max(ChannelPrediction.created_at).label("latest_at"),
            )
            .group_by(ChannelPrediction.channel_id)
            .subquery()
        )
        stmt = (
            select(ChannelPrediction, Channel)
            .join(
                latest,
                and_(
                    ChannelPrediction.channel_id == latest.c.channel_id,
                    ChannelPrediction.created_at == latest.c.latest_at,
                ),
            )
            .join(Channel, Channel.id == ChannelPrediction.channel_id)
            .where(
                ChannelPrediction.is_ai.is_(True),
                ChannelPrediction.confidence >= min_confidence,
            )
            .order_by(ChannelPrediction.created_at.desc())
            .limit(limit)
        )
        rows = (await db.execute(stmt)).all()
        return [
            {
                "channel_id": str(channel.id),
                "identifier": channel.identifier,
                "youtube_channel_id": channel.youtube_channel_id,
                "handle": channel.handle,
                "title": channel.title,
                "is_ai": prediction.is_ai,
                "confidence": prediction.confidence,
                "model_version": prediction.model_version,
                "predicted_at": prediction.created_at,
            }
            for prediction, channel in rows
        ]


consensus_store = ConsensusStore()
