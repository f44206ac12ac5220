"""Pydantic schemas for checkout, cancellation and subscription status."""
from datetime import datetime
from uuid import UUID

from pydantic import Field

from metering.schemas.base import CamelModel
from metering.services.subscription_state import LifecycleState


class AccountLookup(CamelModel):
    """Identifies an account by id or email. Falls back to the caller's header identity."""

    user_id: UUID | None = Field(default=None, description="Account ID")
    user_email: str | None = Field(default=None, description="Account email")


class CheckoutResponse(CamelModel):
    url: str = Field(..., description="Hosted checkout URL")


class CancelResponse(CamelModel):
    status: str = Field(..., description="success or already_canceling")
    message: str
    subscription_end_date: datetime | None = Field(default=None, description="When premium access ends")
    lifecycle_state: LifecycleState


class SubscriptionDetails(CamelModel):
    type: str = Field(..., description="standard or premium")
    is_trial_active: bool = False
    trial_ends_at: datetime | None = None
    subscription_ends_at: datetime | None = None
    had_trial: bool = False
    is_canceled: bool = False
    canceled_during_trial: bool = False


class SubscriptionStatusResponse(CamelModel):
    status: LifecycleState
    details: SubscriptionDetails


class WebhookAck(CamelModel):
    received: bool = True
    event_type: str
    outcome: str = Field(..., description="applied, noop, unresolved, duplicate or ignored")
