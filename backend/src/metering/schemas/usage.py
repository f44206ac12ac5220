"""Pydantic schemas for usage accounting."""
from datetime import datetime

from pydantic import Field

from metering.schemas.base import CamelModel


class LimitDecision(CamelModel):
    """Verdict on whether the caller may perform another chargeable action."""

    can_swipe: bool = Field(..., description="Whether another swipe is allowed")
    is_premium: bool = Field(default=False, description="Active paid subscription")
    is_trial: bool = Field(default=False, description="Trial currently running")
    daily_swipes: int = Field(..., ge=0, description="Swipes since the last reset")
    requires_upgrade: bool | None = Field(default=None, description="Signed-in caller hit the free limit")
    requires_sign_in: bool | None = Field(default=None, description="Anonymous caller hit the anonymous limit")
    trial_ends_at: datetime | None = Field(default=None, description="End of the running trial")


class UsageStatus(CamelModel):
    """Current counters and entitlement for a caller."""

    daily_swipes: int = Field(..., ge=0)
    total_swipes: int = Field(..., ge=0)
    is_premium: bool = False
    is_trial: bool = False
    was_reset: bool = Field(default=False, description="A daily reset happened during this call")
    trial_ends_at: datetime | None = None
    next_reset_at: datetime = Field(..., description="Next local-midnight reset instant")
    resets_in: str = Field(..., description="Countdown to the next reset, e.g. '5h 12m'")


class UsageCounters(CamelModel):
    """Counters of a usage record after a write."""

    daily_usage: int = Field(..., ge=0)
    total_usage: int = Field(..., ge=0)
    last_reset: datetime | None = None
    daily_usage_history: dict[str, int] = Field(default_factory=dict)


class MergeRequest(CamelModel):
    """Sign-in hand-off of anonymous usage to an account."""

    name: str | None = Field(default=None, description="Display name from the identity provider")
    picture: str | None = Field(default=None, description="Avatar URL from the identity provider")
    anonymous_swipes: int | None = Field(
        default=None, ge=0, description="Client-declared anonymous daily swipes; overrides the stored IP record"
    )


class MergeResult(CamelModel):
    """Outcome of a merge."""

    user_id: str
    email: str
    daily_swipes: int
    total_swipes: int
    merged_swipes: int = Field(..., ge=0, description="Anonymous daily swipes added to the account")
    source: str = Field(..., description="Where the anonymous count came from: ip_record, client_declared or none")
    ip_cleared: bool = Field(..., description="Whether the anonymous record was cleared")
    is_premium: bool = False
    is_trial: bool = False
    trial_ends_at: datetime | None = None
