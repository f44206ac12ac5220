"""Checkout, cancellation and subscription status endpoints."""
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from metering.adapters.stripe_adapter import StripeAdapter
from metering.api.deps import Caller, get_caller, get_clock, get_db, get_optional_stripe_adapter, get_stripe_adapter
from metering.exceptions import SignInRequiredError
from metering.schemas.subscription import AccountLookup, CancelResponse, CheckoutResponse, SubscriptionStatusResponse
from metering.services.subscription_service import SubscriptionService

router = APIRouter(tags=["Subscriptions"])


def _lookup(caller: Caller, payload: Optional[AccountLookup]) -> tuple[Optional[UUID], Optional[str]]:
    """Account reference from the body, else the caller's signed-in email."""
    if payload and (payload.user_id or payload.user_email):
        return payload.user_id, payload.user_email
    if not caller.identity.is_email:
        raise SignInRequiredError()
    return None, caller.identity.value


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout_session(
    payload: Optional[AccountLookup] = None,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    stripe_adapter: StripeAdapter = Depends(get_stripe_adapter),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> CheckoutResponse:
    """
    Start a hosted checkout for the premium plan with a free trial.

    Fails with 409 if the account already used its trial.
    """
    user_id, email = _lookup(caller, payload)
    service = SubscriptionService(db, stripe_adapter, clock=clock)
    return await service.create_checkout(user_id=user_id, email=email)


@router.post("/subscription/cancel", response_model=CancelResponse)
async def cancel_subscription(
    payload: Optional[AccountLookup] = None,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    stripe_adapter: Optional[StripeAdapter] = Depends(get_optional_stripe_adapter),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> CancelResponse:
    """
    Cancel the caller's subscription.

    Paid subscriptions run to the end of the current period. A trial that
    never reached the payment provider ends immediately.
    """
    user_id, email = _lookup(caller, payload)
    service = SubscriptionService(db, stripe_adapter, clock=clock)
    response = await service.cancel(user_id=user_id, email=email)
    await db.commit()
    return response


@router.get("/subscription/status", response_model=SubscriptionStatusResponse)
async def get_subscription_status(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> SubscriptionStatusResponse:
    """Lifecycle state derived from the stored subscription flags."""
    if not caller.identity.is_email:
        raise SignInRequiredError()
    service = SubscriptionService(db, clock=clock)
    return await service.get_status(email=caller.identity.value)
