"""Saved response endpoints."""
from datetime import datetime
from typing import Callable

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from metering.api.deps import Caller, get_caller, get_clock, get_db
from metering.schemas.learning import SavedResponseCreate, SavedResponseDeleted, SavedResponseList, SavedResponseRead
from metering.services.saved_response_service import SavedResponseService
from metering.services.usage_service import UsageLedger

router = APIRouter(prefix="/saved-responses", tags=["Saved Responses"])


def _service(db: AsyncSession, clock: Callable[[], datetime]) -> SavedResponseService:
    return SavedResponseService(db, UsageLedger(db, clock=clock))


@router.get("", response_model=SavedResponseList)
async def list_saved_responses(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> SavedResponseList:
    """The caller's saved responses, newest first."""
    responses = await _service(db, clock).list_responses(caller.identity)
    await db.commit()
    return SavedResponseList(responses=[SavedResponseRead.model_validate(r) for r in responses])


@router.post("", response_model=SavedResponseRead, status_code=status.HTTP_201_CREATED)
async def save_response(
    payload: SavedResponseCreate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> SavedResponseRead:
    """Keep a generated response."""
    saved = await _service(db, clock).save(caller.identity, payload)
    await db.commit()
    return SavedResponseRead.model_validate(saved)


@router.delete("", response_model=SavedResponseDeleted)
async def delete_saved_response(
    created_at: datetime = Query(..., alias="createdAt", description="Creation instant of the response to delete"),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> SavedResponseDeleted:
    """Remove a saved response, identified by its creation instant."""
    deleted = await _service(db, clock).remove(caller.identity, created_at)
    await db.commit()
    return SavedResponseDeleted(deleted=deleted)
