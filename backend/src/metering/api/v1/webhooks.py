"""Stripe webhook handler for subscription lifecycle events."""
from datetime import datetime
from typing import Callable

import structlog
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from metering.adapters.stripe_adapter import StripeAdapter
from metering.api.deps import get_clock, get_db, get_stripe_adapter
from metering.exceptions import InvalidSignatureError
from metering.schemas.subscription import WebhookAck
from metering.services.subscription_service import SubscriptionService
from metering.services.webhook_service import WebhookService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks/stripe", tags=["Webhooks"])


@router.post("", response_model=WebhookAck)
async def handle_stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    stripe_adapter: StripeAdapter = Depends(get_stripe_adapter),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> WebhookAck:
    """
    Handle incoming Stripe webhook events.

    Verifies the signature and applies:
    - checkout.session.completed: start the trial
    - customer.subscription.trial_will_end: flag the upcoming conversion
    - customer.subscription.updated: mirror status and cancellation
    - customer.subscription.deleted: return the account to free

    Business no-ops (unknown customer, repeated delivery) are acknowledged
    with 200. Signature failures return 400 and unexpected errors 500 so
    Stripe retries the delivery.
    """
    body = await request.body()
    signature = request.headers.get("stripe-signature")

    if not signature:
        logger.error("stripe_webhook_missing_signature")
        raise InvalidSignatureError("Missing Stripe signature")

    event = await stripe_adapter.construct_webhook_event(body, signature)

    service = WebhookService(db, SubscriptionService(db, stripe_adapter, clock=clock))
    ack = await service.handle(event)
    await db.commit()
    return ack
