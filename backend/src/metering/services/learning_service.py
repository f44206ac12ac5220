"""Learning percentage derived from the number of saved responses."""
from datetime import datetime
from typing import Callable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from metering.models.saved_response import SavedResponse
from metering.models.user import User
from metering.schemas.learning import LearningPercentage
from metering.services.identity import Identity
from metering.services.usage_service import entitlement_for
from metering.utils.clock import utcnow

MIN_LEARNING_PERCENTAGE = 0

FREE_INCREMENT = 5
FREE_MAX_PERCENTAGE = 70
PREMIUM_INCREMENT = 10
PREMIUM_MAX_PERCENTAGE = 100


def increment_per_response(premium: bool) -> int:
    return PREMIUM_INCREMENT if premium else FREE_INCREMENT


def max_percentage(premium: bool) -> int:
    return PREMIUM_MAX_PERCENTAGE if premium else FREE_MAX_PERCENTAGE


def learning_percentage(saved_count: int, premium: bool) -> int:
    """
    Percentage for a number of saved responses.

    Linear in the count, capped per tier and never below the minimum.
    """
    percentage = min(max(saved_count, 0) * increment_per_response(premium), max_percentage(premium))
    return max(percentage, MIN_LEARNING_PERCENTAGE)


class LearningService:
    """Reads the inputs of the learning percentage for a caller."""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    async def get_percentage(self, identity: Identity) -> LearningPercentage:
        """Anonymous callers and unknown accounts get the minimum."""
        if not identity.is_email:
            return LearningPercentage(percentage=MIN_LEARNING_PERCENTAGE)

        result = await self.db.execute(select(User).where(User.email == identity.value))
        user = result.scalar_one_or_none()
        if user is None:
            return LearningPercentage(percentage=MIN_LEARNING_PERCENTAGE)

        count_result = await self.db.execute(
            select(func.count(SavedResponse.id)).where(SavedResponse.user_id == user.id)
        )
        saved_count = count_result.scalar_one()

        entitlement = entitlement_for(user)
        premium = entitlement.is_active or entitlement.trial_active(self.clock())
        return LearningPercentage(
            percentage=learning_percentage(saved_count, premium),
            saved_responses_count=saved_count,
        )
