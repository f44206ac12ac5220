"""Swipe limit check and charge endpoints."""
from datetime import datetime
from typing import Callable

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from metering.api.deps import Caller, get_caller, get_clock, get_db
from metering.schemas.usage import LimitDecision
from metering.services.usage_service import UsageLedger

router = APIRouter(prefix="/swipes", tags=["Usage"])


@router.get("", response_model=LimitDecision, response_model_exclude_none=True)
async def check_swipe(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> LimitDecision:
    """Whether the caller may swipe now, without charging."""
    ledger = UsageLedger(db, clock=clock)
    decision = await ledger.check_limits(caller.identity)
    await db.commit()
    return decision


@router.post("", response_model=LimitDecision, response_model_exclude_none=True)
async def record_swipe(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> LimitDecision:
    """
    Charge one swipe.

    A denied swipe is not counted: the response carries `canSwipe=false`
    with `requiresUpgrade` (signed in) or `requiresSignIn` (anonymous).
    """
    ledger = UsageLedger(db, clock=clock)
    decision = await ledger.record_swipe(caller.identity)
    await db.commit()
    return decision
