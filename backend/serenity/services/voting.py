"""
Serenity Voting Engine — crowd labeling with anti-brigading weights.

Per vote:
1. Validate the submission (channel reference, verdict, voter)
2. Resolve or create the channel and the voter's reputation row
3. Weight the vote: shadow-banned → 0, otherwise it decays with the number
   of votes the channel already has, so late pile-ons move consensus less
4. Persist the vote (steps 2–4 commit together)
5. Re-aggregate every non-shadow-banned vote and append a consensus
   prediction
6. Invalidate the resolver's cache for the channel

Consensus is always recomputed from the full vote history, so two votes that
raced on the same prior count still converge to the correct aggregate.
"""
from __future__ import annotations

import asyncio
import logging
import math
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional, Set, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from serenity.core.errors import NotFoundError, PersistenceError, ValidationError
from serenity.core.metrics import CONSENSUS_RECOMPUTED, VOTES_SUBMITTED
from serenity.models.models import Channel, ChannelVote
from serenity.services.consensus_store import ConsensusStore, merge_channel_metadata
from serenity.services.identifiers import normalize_key

logger = logging.getLogger(__name__)

WEIGHT_FLOOR = 0.1
WEIGHT_DECAY = 0.2
AI_THRESHOLD = 0.6
CONSENSUS_MODEL_VERSION = "consensus-v1"


# ═══════════════════════════════════════════════════════════════════════
# Pure scoring
# ═══════════════════════════════════════════════════════════════════════

def compute_vote_weight(
    prior_votes: int,
    shadow_banned: bool = False,
    floor: float = WEIGHT_FLOOR,
    decay: float = WEIGHT_DECAY,
) -> float:
    """
    0 prior votes → 1.0, 9 → 0.8, 99 → 0.6, never below `floor`.
    Shadow-banned voters always get exactly 0.
    """
    if shadow_banned:
        return 0.0
    n = max(0, prior_votes)
    return max(floor, 1.0 - decay * math.log10(n + 1))


@dataclass(frozen=True)
class ConsensusResult:
    score: float
    is_ai: bool
    confidence: float
    vote_count: int
    total_weight: float


def compute_consensus(
    votes: Iterable[Tuple[bool, float]],
    threshold: float = AI_THRESHOLD,
) -> Optional[ConsensusResult]:
    """Weighted share of AI verdicts. None when there is nothing to aggregate."""
    weighted_sum = 0.0
    total_weight = 0.0
    count = 0
    for is_ai, weight in votes:
        weighted_sum += (1.0 if is_ai else 0.0) * weight
        total_weight += weight
        count += 1

    if count == 0 or total_weight <= 0:
        return None

    score = weighted_sum / total_weight
    return ConsensusResult(
        score=score,
        is_ai=score > threshold,
        confidence=max(score, 1.0 - score),
        vote_count=count,
        total_weight=total_weight,
    )


# ═══════════════════════════════════════════════════════════════════════
# Engine
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class VoteSubmission:
    voter_id: Optional[str]
    is_ai: Optional[bool]
    channel_id: Optional[str] = None
    identifier: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class VoteReceipt:
    weight: float
    vote_id: uuid.UUID
    channel_id: uuid.UUID


ConsensusListener = Callable[[Channel], None]


@dataclass
class _ValidVote:
    voter_id: str
    is_ai: bool
    channel_uuid: Optional[uuid.UUID]
    identifier: Optional[str]
    metadata: Optional[Dict[str, Any]] = field(default=None)


class VotingEngine:
    def __init__(
        self,
        store: ConsensusStore,
        session_factory: async_sessionmaker[AsyncSession],
        on_consensus_change: Optional[ConsensusListener] = None,
        timeout: float = 5.0,
        weight_floor: float = WEIGHT_FLOOR,
        weight_decay: float = WEIGHT_DECAY,
        ai_threshold: float = AI_THRESHOLD,
        model_version: str = CONSENSUS_MODEL_VERSION,
    ):
        self.store = store
        self.session_factory = session_factory
        self.on_consensus_change = on_consensus_change
        self.timeout = timeout
        self.weight_floor = weight_floor
        self.weight_decay = weight_decay
        self.ai_threshold = ai_threshold
        self.model_version = model_version
        self._background: Set[asyncio.Task] = set()

    # ── Validation ───────────────────────────────────────────────────────

    @staticmethod
    def _validate(submission: VoteSubmission) -> _ValidVote:
        missing = []
        channel_uuid: Optional[uuid.UUID] = None

        if submission.channel_id:
            try:
                channel_uuid = uuid.UUID(str(submission.channel_id))
            except ValueError:
                raise ValidationError(f"channel_id is not a valid id: {submission.channel_id!r}")
        identifier = submission.identifier if normalize_key(submission.identifier) else None
        if channel_uuid is None and identifier is None:
            missing.append("channel_id")

        if not isinstance(submission.is_ai, bool):
            missing.append("is_ai")

        voter_id = (submission.voter_id or "").strip()
        if not voter_id:
            missing.append("voter_id")

        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        return _ValidVote(
            voter_id=voter_id,
            is_ai=submission.is_ai,
            channel_uuid=channel_uuid,
            identifier=identifier,
            metadata=submission.metadata,
        )

    # ── Submission ───────────────────────────────────────────────────────

    async def submit_vote(self, submission: VoteSubmission) -> VoteReceipt:
        vote_in = self._validate(submission)

        try:
            channel, vote = await asyncio.wait_for(self._record_vote(vote_in), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise PersistenceError("Timed out while recording the vote; please retry")

        VOTES_SUBMITTED.labels(
            verdict="ai" if vote.is_ai else "human",
            shadow_banned=str(vote.is_shadow_banned).lower(),
        ).inc()
        logger.info(
            f"Vote recorded channel={channel.identifier} voter={vote.voter_id} "
            f"is_ai={vote.is_ai} weight={vote.weight:.3f}"
        )

        # The vote is committed: finish aggregation even if the caller goes away
        task = asyncio.ensure_future(self._recompute_and_invalidate(channel))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        task.add_done_callback(_log_background_failure)
        await asyncio.shield(task)

        return VoteReceipt(weight=vote.weight, vote_id=vote.id, channel_id=channel.id)

    async def _record_vote(self, vote_in: _ValidVote) -> Tuple[Channel, ChannelVote]:
        # One retry covers two first-time votes racing to insert the same channel/voter row
        for attempt in (1, 2):
            try:
                async with self.session_factory() as db:
                    async with db.begin():
                        channel = await self._resolve_channel(db, vote_in)
                        voter = await self.store.get_or_create_voter(db, vote_in.voter_id)
                        prior = 0 if voter.is_shadow_banned else await self.store.count_votes(db, channel.id)
                        weight = compute_vote_weight(
                            prior,
                            voter.is_shadow_banned,
                            floor=self.weight_floor,
                            decay=self.weight_decay,
                        )
                        vote = await self.store.add_vote(db, channel, voter, vote_in.is_ai, weight)
                return channel, vote
            except (IntegrityError, PersistenceError) as e:
                cause = e if isinstance(e, IntegrityError) else e.__cause__
                if attempt == 1 and isinstance(cause, IntegrityError):
                    logger.info(f"Concurrent insert while recording vote, retrying: {cause}")
                    continue
                if isinstance(e, PersistenceError):
                    raise
                raise PersistenceError(f"Failed to record vote: {e}") from e
            except SQLAlchemyError as e:
                raise PersistenceError(f"Failed to record vote: {e}") from e
        raise PersistenceError("Failed to record vote")

    async def _resolve_channel(self, db: AsyncSession, vote_in: _ValidVote) -> Channel:
        if vote_in.channel_uuid is not None:
            channel = await self.store.get_channel(db, vote_in.channel_uuid)
            if channel is not None:
                merge_channel_metadata(channel, vote_in.metadata)
                return channel
            if vote_in.identifier is None:
                raise NotFoundError(f"Channel {vote_in.channel_uuid} not found")
        return await self.store.get_or_create_channel(db, vote_in.identifier, vote_in.metadata)

    # ── Consensus ────────────────────────────────────────────────────────

    async def recompute_consensus(self, channel: Channel) -> Optional[ConsensusResult]:
        try:
            async with self.session_factory() as db:
                async with db.begin():
                    votes = await self.store.active_votes(db, channel.id)
                    result = compute_consensus(
                        ((v.is_ai, v.weight) for v in votes),
                        threshold=self.ai_threshold,
                    )
                    if result is None:
                        logger.info(f"No countable votes for {channel.identifier}; consensus unchanged")
                        return None
                    await self.store.append_prediction(
                        db,
                        channel.id,
                        is_ai=result.is_ai,
                        confidence=result.confidence,
                        model_version=self.model_version,
                        context={
                            "score": round(result.score, 6),
                            "vote_count": result.vote_count,
                            "total_weight": round(result.total_weight, 6),
                        },
                    )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to recompute consensus: {e}") from e

        CONSENSUS_RECOMPUTED.labels(is_ai=str(result.is_ai).lower()).inc()
        logger.info(
            f"Consensus for {channel.identifier}: is_ai={result.is_ai} "
            f"confidence={result.confidence:.3f} votes={result.vote_count}"
        )
        return result

    async def _recompute_and_invalidate(self, channel: Channel) -> None:
        await self.recompute_consensus(channel)
        if self.on_consensus_change is not None:
            try:
                self.on_consensus_change(channel)
            except Exception as e:
                logger.warning(f"Cache invalidation failed for {channel.identifier}: {e}")


def _log_background_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Consensus recomputation failed: {exc}")
