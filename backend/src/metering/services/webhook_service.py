"""Service for applying payment provider webhook events."""
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from metering import metrics
from metering.adapters.stripe_adapter import current_period_end, from_timestamp
from metering.exceptions import TrialAlreadyUsedError, ValidationError
from metering.models.webhook_event import ProcessedWebhookEvent
from metering.schemas.subscription import WebhookAck
from metering.services.subscription_service import SubscriptionService
from metering.services.subscription_state import SubscriptionDeleted, SubscriptionUpdated, Transition

logger = structlog.get_logger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
TRIAL_WILL_END = "customer.subscription.trial_will_end"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"

HANDLED_EVENTS = frozenset({CHECKOUT_COMPLETED, TRIAL_WILL_END, SUBSCRIPTION_UPDATED, SUBSCRIPTION_DELETED})


def _customer_id(obj: dict[str, Any]) -> str:
    customer = obj.get("customer")
    if isinstance(customer, dict):
        customer = customer.get("id")
    if not customer:
        raise ValidationError("Event is missing the customer reference", field="customer")
    return customer


def _outcome(transition: Transition | None) -> str:
    if transition is None:
        return "unresolved"
    return "noop" if transition.is_noop else "applied"


class WebhookService:
    """
    Dispatches verified provider events to the subscription state machine.

    Outcomes: ``applied`` (record changed), ``noop`` (already in the target
    state or a rejected repeat), ``unresolved`` (no account for the
    customer), ``ignored`` (event kind not handled) and ``duplicate``
    (event id already processed). All of them are acknowledged.
    """

    def __init__(self, db: AsyncSession, subscriptions: SubscriptionService):
        """Initialize webhook service with database session and subscription service."""
        self.db = db
        self.subscriptions = subscriptions

    async def _already_processed(self, event_id: str) -> bool:
        result = await self.db.execute(
            select(ProcessedWebhookEvent.id).where(ProcessedWebhookEvent.event_id == event_id)
        )
        return result.scalar_one_or_none() is not None

    async def _mark_processed(self, event_id: str, event_type: str, customer_id: str | None, outcome: str) -> bool:
        """Record the event id. Returns False if a concurrent delivery recorded it first."""
        try:
            async with self.db.begin_nested():
                self.db.add(
                    ProcessedWebhookEvent(
                        event_id=event_id,
                        event_type=event_type,
                        customer_id=customer_id,
                        outcome=outcome,
                    )
                )
        except IntegrityError:
            return False
        return True

    async def handle(self, event: dict[str, Any]) -> WebhookAck:
        """
        Apply one verified provider event.

        Args:
            event: Parsed event with ``id``, ``type`` and ``data.object``

        Returns:
            Acknowledgement with the outcome

        Raises:
            ValidationError: If the event is missing required fields
            UserNotFoundError: If a completed checkout names an unknown account
        """
        event_type = event.get("type")
        event_id = event.get("id")
        obj = (event.get("data") or {}).get("object")
        if not event_type or not isinstance(obj, dict):
            raise ValidationError("Event is missing type or data.object")

        log = logger.bind(event_id=event_id, event_type=event_type)
        log.info("stripe_webhook_received")

        if event_type not in HANDLED_EVENTS:
            log.info("stripe_webhook_unhandled_event")
            metrics.webhooks_received_total.labels(event_type=event_type, outcome="ignored").inc()
            return WebhookAck(event_type=event_type, outcome="ignored")

        if event_id and await self._already_processed(event_id):
            log.info("stripe_webhook_duplicate")
            metrics.webhooks_received_total.labels(event_type=event_type, outcome="duplicate").inc()
            return WebhookAck(event_type=event_type, outcome="duplicate")

        customer_id = _customer_id(obj)
        if event_type == CHECKOUT_COMPLETED:
            outcome = await self._checkout_completed(obj, customer_id)
        elif event_type == TRIAL_WILL_END:
            outcome = _outcome(await self.subscriptions.trial_will_end(customer_id))
        elif event_type == SUBSCRIPTION_UPDATED:
            outcome = _outcome(await self.subscriptions.update_subscription(self._parse_updated(obj, customer_id)))
        else:
            outcome = _outcome(await self.subscriptions.delete_subscription(SubscriptionDeleted(customer_id)))

        if event_id and not await self._mark_processed(event_id, event_type, customer_id, outcome):
            log.info("stripe_webhook_concurrent_duplicate")
            outcome = "duplicate"

        metrics.webhooks_received_total.labels(event_type=event_type, outcome=outcome).inc()
        log.info("stripe_webhook_processed", customer_id=customer_id, outcome=outcome)
        return WebhookAck(event_type=event_type, outcome=outcome)

    async def _checkout_completed(self, session: dict[str, Any], customer_id: str) -> str:
        metadata = session.get("metadata") or {}
        user_id = metadata.get("user_id") or session.get("client_reference_id")
        email = (
            metadata.get("user_email")
            or session.get("customer_email")
            or (session.get("customer_details") or {}).get("email")
        )
        if not user_id and not email:
            raise ValidationError("Checkout session is missing the user reference", field="metadata")

        try:
            transition = await self.subscriptions.complete_checkout(customer_id, user_id=user_id, email=email)
        except TrialAlreadyUsedError:
            logger.warning(
                "checkout_completed_trial_already_used",
                customer_id=customer_id,
                user_id=user_id,
                email=email,
            )
            return "noop"
        return _outcome(transition)

    @staticmethod
    def _parse_updated(subscription: dict[str, Any], customer_id: str) -> SubscriptionUpdated:
        status = subscription.get("status")
        if not status:
            raise ValidationError("Subscription event is missing status", field="status")
        period_end = current_period_end(subscription)
        if period_end is None:
            raise ValidationError("Subscription event is missing current_period_end", field="current_period_end")
        return SubscriptionUpdated(
            customer_id=customer_id,
            status=status,
            cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
            current_period_end=period_end,
            trial_end=from_timestamp(subscription.get("trial_end")),
        )
