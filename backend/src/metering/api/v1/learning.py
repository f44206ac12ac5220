"""Learning percentage endpoint."""
from datetime import datetime
from typing import Callable

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from metering.api.deps import Caller, get_caller, get_clock, get_db
from metering.schemas.learning import LearningPercentage
from metering.services.learning_service import LearningService

router = APIRouter(prefix="/learning-percentage", tags=["Learning"])


@router.get("", response_model=LearningPercentage)
async def get_learning_percentage(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> LearningPercentage:
    """How far personalization has progressed, from the caller's saved responses."""
    return await LearningService(db, clock=clock).get_percentage(caller.identity)
