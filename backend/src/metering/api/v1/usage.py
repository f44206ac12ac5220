"""Usage status and sign-in merge endpoints."""
from datetime import datetime
from typing import Callable, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from metering.api.deps import Caller, get_caller, get_clock, get_db
from metering.exceptions import SignInRequiredError
from metering.schemas.usage import MergeRequest, MergeResult, UsageStatus
from metering.services.merge_service import IdentityMergeService
from metering.services.usage_service import UsageLedger

router = APIRouter(prefix="/usage", tags=["Usage"])


@router.get("", response_model=UsageStatus)
async def get_usage_status(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> UsageStatus:
    """
    Current swipe counters for the caller.

    Runs the daily reset check first; `wasReset` reports whether it fired.
    Signed-in callers get an account created on first lookup.
    """
    ledger = UsageLedger(db, clock=clock)
    usage = await ledger.usage_status(caller.identity, name=caller.name, picture=caller.picture)
    await db.commit()
    return usage


@router.post("/merge", response_model=MergeResult)
async def merge_anonymous_usage(
    payload: Optional[MergeRequest] = None,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> MergeResult:
    """
    Move the anonymous swipes recorded for the caller's address onto the account.

    Called once at sign-in. `anonymousSwipes` may be sent to use a
    client-tracked count instead of the stored address record.
    """
    if not caller.identity.is_email:
        raise SignInRequiredError("Merging usage requires a signed-in account")

    payload = payload or MergeRequest()
    service = IdentityMergeService(db, clock=clock)
    return await service.merge(
        caller.identity,
        caller.address,
        declared_swipes=payload.anonymous_swipes,
        name=payload.name or caller.name,
        picture=payload.picture or caller.picture,
    )
