"""
Serenity API — Manual override routes.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from serenity.api.deps import get_override_store, require_labeler_token
from serenity.models.models import OverrideAction
from serenity.schemas.schemas import OverrideListResponse, OverrideSchema, OverrideUpsert
from serenity.services.overrides import Override, OverrideStore

router = APIRouter(prefix="/overrides", tags=["Overrides"])


def _to_schema(record: Override) -> OverrideSchema:
    return OverrideSchema(**record.to_dict())


@router.get("", response_model=OverrideListResponse)
async def list_overrides(
    action: Optional[OverrideAction] = Query(None),
    overrides: OverrideStore = Depends(get_override_store),
):
    """All overrides, optionally only blocks or only allows."""
    if action == OverrideAction.BLOCK:
        records = await overrides.list_blocked()
    elif action == OverrideAction.ALLOW:
        records = await overrides.list_allowed()
    else:
        records = await overrides.list()
    return OverrideListResponse(overrides=[_to_schema(r) for r in records], total=len(records))


@router.get("/{identifier:path}", response_model=OverrideSchema)
async def get_override(
    identifier: str,
    overrides: OverrideStore = Depends(get_override_store),
):
    record = await overrides.get_record(identifier)
    if record is None:
        raise HTTPException(status_code=404, detail="Override not found")
    return _to_schema(record)


@router.put(
    "/{identifier:path}",
    response_model=OverrideSchema,
    dependencies=[Depends(require_labeler_token)],
)
async def set_override(
    identifier: str,
    data: OverrideUpsert,
    overrides: OverrideStore = Depends(get_override_store),
):
    """Block or allow a channel; replaces any existing decision."""
    record = await overrides.set(identifier, data.action, handle=data.handle)
    return _to_schema(record)


@router.delete("/{identifier:path}", dependencies=[Depends(require_labeler_token)])
async def delete_override(
    identifier: str,
    overrides: OverrideStore = Depends(get_override_store),
):
    removed = await overrides.remove(identifier)
    if not removed:
        raise HTTPException(status_code=404, detail="Override not found")
    return {"status": "removed", "identifier": identifier}


@router.delete("", dependencies=[Depends(require_labeler_token)])
async def clear_overrides(overrides: OverrideStore = Depends(get_override_store)):
    await overrides.clear_all()
    return {"status": "cleared"}
