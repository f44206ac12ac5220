"""Pure allow/deny decision for chargeable actions."""
from dataclasses import dataclass
from datetime import datetime

from metering.schemas.usage import LimitDecision


@dataclass(frozen=True)
class Limits:
    """Daily allowances per caller class."""

    free_daily_limit: int
    anonymous_limit: int


@dataclass(frozen=True)
class Entitlement:
    """Subscription flags as stored at read time."""

    is_active: bool = False
    is_trial: bool = False
    trial_end_date: datetime | None = None

    def trial_active(self, now: datetime) -> bool:
        return bool(self.is_trial and self.trial_end_date is not None and self.trial_end_date > now)


def decide(
    daily_usage: int,
    entitlement: Entitlement | None,
    limits: Limits,
    now: datetime,
) -> LimitDecision:
    """
    Map counters and subscription state to a verdict.

    ``entitlement`` is None for anonymous callers. Stored flags are trusted
    as-is: an expired trial that has not yet been corrected by a provider
    event is not downgraded here.
    """
    if entitlement is None:
        can_swipe = daily_usage < limits.anonymous_limit
        return LimitDecision(
            can_swipe=can_swipe,
            daily_swipes=daily_usage,
            requires_sign_in=not can_swipe,
        )

    trial_active = entitlement.trial_active(now)
    if entitlement.is_active or trial_active:
        return LimitDecision(
            can_swipe=True,
            is_premium=entitlement.is_active,
            is_trial=trial_active,
            daily_swipes=daily_usage,
            trial_ends_at=entitlement.trial_end_date if trial_active else None,
        )

    can_swipe = daily_usage < limits.free_daily_limit
    return LimitDecision(
        can_swipe=can_swipe,
        daily_swipes=daily_usage,
        requires_upgrade=not can_swipe,
    )
