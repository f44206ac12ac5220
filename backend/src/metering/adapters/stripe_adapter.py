"""Stripe payment gateway adapter."""
import asyncio
import functools
import json
from datetime import datetime, timezone
from typing import Any, Callable

import stripe
import structlog

from metering.config import Settings, settings
from metering.exceptions import (
    InvalidSignatureError,
    NotConfiguredError,
    NotFoundError,
    UpstreamFailureError,
    ValidationError,
)

logger = structlog.get_logger(__name__)

CANCELLABLE_STATUSES = ("active", "trialing")


def from_timestamp(value: int | float | None) -> datetime | None:
    """Convert a provider epoch-seconds timestamp to an aware instant."""
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _field(obj: Any, key: str) -> Any:
    try:
        return obj[key]
    except (KeyError, TypeError, IndexError):
        return None


def current_period_end(subscription: Any) -> datetime | None:
    """
    Period end of a subscription payload.

    Newer API versions carry the period on the subscription items rather
    than the subscription itself.
    """
    value = _field(subscription, "current_period_end")
    if value is None:
        items = _field(_field(subscription, "items"), "data") or []
        if items:
            value = _field(items[0], "current_period_end")
    return from_timestamp(value)


class StripeAdapter:
    """Adapter for Stripe checkout, subscription and webhook calls."""

    def __init__(self, config: Settings = settings):
        """
        Initialize Stripe adapter.

        Raises:
            NotConfiguredError: If the Stripe secret key is missing
        """
        if not config.stripe_secret_key:
            raise NotConfiguredError("Stripe is not configured")
        self.config = config
        self.api_key = config.stripe_secret_key
        self.timeout = config.upstream_timeout_seconds

    async def _call(self, operation: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a blocking Stripe call in a worker thread, bounded by the upstream timeout."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(functools.partial(fn, *args, api_key=self.api_key, **kwargs)),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("stripe_call_timed_out", operation=operation, timeout_seconds=self.timeout)
            raise UpstreamFailureError(f"Stripe {operation} timed out") from e
        except stripe.StripeError as e:
            stripe_code = getattr(e, "code", None)
            logger.error("stripe_call_failed", operation=operation, stripe_code=stripe_code, error=str(e))
            if stripe_code == "resource_missing":
                raise NotFoundError(f"Stripe {operation}: resource not found") from e
            raise UpstreamFailureError(f"Stripe {operation} failed: {e.user_message or e}") from e

    async def create_checkout_session(self, user_id: str, email: str) -> str:
        """
        Create a subscription checkout session with a free trial.

        Args:
            user_id: Account ID, stored in session metadata for webhook correlation
            email: Account email

        Returns:
            Hosted checkout URL
        """
        base_url = self.config.frontend_base_url.rstrip("/")
        session = await self._call(
            "checkout.create",
            stripe.checkout.Session.create,
            mode="subscription",
            line_items=[
                {
                    "price_data": {
                        "currency": self.config.checkout_currency,
                        "product_data": {
                            "name": self.config.checkout_product_name,
                            "description": self.config.checkout_product_description,
                        },
                        "unit_amount": self.config.checkout_unit_amount,
                        "recurring": {"interval": "month"},
                    },
                    "quantity": 1,
                }
            ],
            subscription_data={
                "trial_period_days": self.config.trial_days,
                "trial_settings": {"end_behavior": {"missing_payment_method": "cancel"}},
            },
            success_url=f"{base_url}/?success=true",
            cancel_url=f"{base_url}/?canceled=true",
            customer_email=email,
            metadata={"user_id": user_id, "user_email": email},
        )
        return _field(session, "url")

    async def list_subscriptions(self, customer_id: str) -> list[dict[str, Any]]:
        """
        List a customer's subscriptions in every status.

        Returns:
            Plain subscription summaries, newest first
        """
        result = await self._call(
            "subscriptions.list",
            stripe.Subscription.list,
            customer=customer_id,
            status="all",
            limit=10,
        )
        return [self._summarize(sub) for sub in (_field(result, "data") or [])]

    async def cancel_at_period_end(self, subscription_id: str) -> dict[str, Any]:
        """Mark a subscription to cancel when its current period ends."""
        subscription = await self._call(
            "subscriptions.modify",
            stripe.Subscription.modify,
            subscription_id,
            cancel_at_period_end=True,
        )
        return self._summarize(subscription)

    @staticmethod
    def _summarize(subscription: Any) -> dict[str, Any]:
        return {
            "id": _field(subscription, "id"),
            "status": _field(subscription, "status"),
            "cancel_at_period_end": bool(_field(subscription, "cancel_at_period_end")),
            "cancel_at": from_timestamp(_field(subscription, "cancel_at")),
            "current_period_end": current_period_end(subscription),
        }

    async def construct_webhook_event(self, payload: bytes, signature: str) -> dict[str, Any]:
        """
        Verify a webhook signature and parse the event.

        Args:
            payload: Raw request body
            signature: Value of the Stripe-Signature header

        Returns:
            Event as a plain dict

        Raises:
            NotConfiguredError: If no webhook secret is configured
            ValidationError: If the payload or signature is invalid
        """
        if not self.config.stripe_webhook_secret:
            raise NotConfiguredError("Stripe webhook secret is not configured")
        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body,
                signature,
                self.config.stripe_webhook_secret,
                tolerance=stripe.Webhook.DEFAULT_TOLERANCE,
            )
            event = json.loads(body)
        except stripe.SignatureVerificationError as e:
            raise InvalidSignatureError(f"Invalid signature: {e}") from e
        except ValueError as e:
            raise ValidationError(f"Invalid payload: {e}") from e
        if not isinstance(event, dict) or "type" not in event:
            raise ValidationError("Invalid payload: not an event")
        return event
