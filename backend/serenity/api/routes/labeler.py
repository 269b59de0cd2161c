"""
Serenity API — Labeler routes.

Token-protected endpoints used by the consensus-labeling front end. Failures
come back in the same envelope as successes ({ok|success: false, error})
with the status mapped from the error type.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as SchemaError
from sqlalchemy.ext.asyncio import AsyncSession

from serenity.api.deps import (
    TOKEN_HEADER,
    get_candidate_queue,
    get_voting_engine,
    require_labeler_token,
    verify_labeler_token,
)
from serenity.core.config import Settings, get_settings
from serenity.core.database import get_db
from serenity.core.errors import SerenityError, ValidationError
from serenity.schemas.schemas import (
    CandidateItemSchema,
    NextCandidateResponse,
    ShadowBanUpdate,
    VoteRequest,
    VoteResponse,
    VoterSchema,
)
from serenity.services.candidates import CandidateQueue
from serenity.services.consensus_store import consensus_store
from serenity.services.voting import VoteSubmission, VotingEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/labeler", tags=["Labeler"])


def _failure(flag: str, error: SerenityError) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content={flag: False, "error": error.message},
    )


async def _read_vote(request: Request) -> VoteRequest:
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body must be a JSON object")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return VoteRequest.model_validate(body)
    except SchemaError as e:
        fields = ", ".join(str(err["loc"][-1]) for err in e.errors() if err.get("loc"))
        raise ValidationError(f"Invalid fields: {fields}")


@router.get("/next-candidate", response_model=NextCandidateResponse, response_model_exclude_none=True)
async def next_candidate(
    voter_id: Optional[str] = Query(None),
    token: Optional[str] = Header(None, alias=TOKEN_HEADER),
    settings: Settings = Depends(get_settings),
    queue: CandidateQueue = Depends(get_candidate_queue),
    db: AsyncSession = Depends(get_db),
):
    """Random unvoted channel for this voter, or error="empty_queue"."""
    try:
        verify_labeler_token(token, settings)
        item = await queue.next_candidate(db, voter_id)
    except SerenityError as e:
        logger.warning(f"next-candidate rejected ({e.status_code}): {e.message}")
        return _failure("ok", e)

    if item is None:
        return NextCandidateResponse(ok=False, error="empty_queue")
    return NextCandidateResponse(ok=True, item=CandidateItemSchema(**item.to_dict()))


@router.post("/submit-vote", response_model=VoteResponse, response_model_exclude_none=True)
async def submit_vote(
    request: Request,
    token: Optional[str] = Header(None, alias=TOKEN_HEADER),
    settings: Settings = Depends(get_settings),
    engine: VotingEngine = Depends(get_voting_engine),
):
    """Record one crowd vote and return the weight it was given."""
    try:
        verify_labeler_token(token, settings)
        payload = await _read_vote(request)
        receipt = await engine.submit_vote(VoteSubmission(**payload.model_dump()))
    except SerenityError as e:
        logger.warning(f"submit-vote rejected ({e.status_code}): {e.message}")
        return _failure("success", e)

    return VoteResponse(success=True, weight_assigned=receipt.weight)


@router.put(
    "/voters/{voter_id}",
    response_model=VoterSchema,
    dependencies=[Depends(require_labeler_token)],
)
async def update_voter(
    voter_id: str,
    data: ShadowBanUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Set or lift a voter's shadow ban. Affects future votes only."""
    voter = await consensus_store.set_shadow_banned(db, voter_id, data.is_shadow_banned)
    await db.commit()
    return VoterSchema.model_validate(voter)
