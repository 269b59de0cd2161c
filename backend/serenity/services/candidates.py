"""
Labeling queue — hands each voter a channel they have not voted on yet.
"""
from __future__ import annotations

import logging
import random
from dataclasses import asdict, dataclass
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from serenity.core.errors import ValidationError
from serenity.models.models import Channel
from serenity.services.consensus_store import ConsensusStore
from serenity.services.identifiers import clean_metadata_value

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateItem:
    id: str
    identifier: str
    handle: Optional[str] = None
    title: Optional[str] = None
    sample_video_id: Optional[str] = None
    sample_thumbnail: Optional[str] = None
    sample_title: Optional[str] = None
    sample_description: Optional[str] = None

    @classmethod
    def from_channel(cls, channel: Channel) -> "CandidateItem":
        title = clean_metadata_value(channel.title)
        description = clean_metadata_value(channel.description)
        return cls(
            id=str(channel.id),
            identifier=channel.identifier,
            handle=clean_metadata_value(channel.handle),
            title=title,
            sample_video_id=clean_metadata_value(channel.sample_video_id),
            sample_thumbnail=clean_metadata_value(channel.sample_thumbnail),
            sample_title=clean_metadata_value(channel.sample_title) or title,
            sample_description=clean_metadata_value(channel.sample_description) or description,
        )

    def to_dict(self) -> Dict[str, Optional[str]]:
        return asdict(self)


class CandidateQueue:
    """Random pick from a bounded batch of channels the voter has not seen."""

    def __init__(
        self,
        store: ConsensusStore,
        batch_size: int = 50,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.batch_size = batch_size
        self.rng = rng or random.Random()

    async def next_candidate(self, db: AsyncSession, voter_id: Optional[str]) -> Optional[CandidateItem]:
        voter_id = (voter_id or "").strip()
        if not voter_id:
            raise ValidationError("voter_id is required")

        batch = await self.store.unvoted_channels(db, voter_id, limit=self.batch_size)
        if not batch:
            logger.debug(f"No unvoted channels left for voter {voter_id}")
            return None
        return CandidateItem.from_channel(self.rng.choice(batch))
