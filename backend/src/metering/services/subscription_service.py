"""Subscription service: checkout, cancellation and provider event handling."""
from datetime import datetime
from typing import Callable
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from metering import metrics
from metering.adapters.stripe_adapter import CANCELLABLE_STATUSES, StripeAdapter
from metering.config import Settings, settings
from metering.exceptions import (
    NoActiveSubscriptionError,
    TrialAlreadyUsedError,
    UpstreamFailureError,
    UserNotFoundError,
    ValidationError,
)
from metering.models.user import User
from metering.schemas.subscription import CancelResponse, CheckoutResponse, SubscriptionDetails, SubscriptionStatusResponse
from metering.services.identity import normalize_email
from metering.services.subscription_state import (
    CancelScheduled,
    CheckoutCompleted,
    Effect,
    LifecycleState,
    SubscriptionDeleted,
    SubscriptionSnapshot,
    SubscriptionUpdated,
    TrialCanceled,
    TrialWillEnd,
    Transition,
    on_cancel_scheduled,
    on_checkout_completed,
    on_subscription_deleted,
    on_subscription_updated,
    on_trial_canceled,
    on_trial_will_end,
)
from metering.utils.clock import utcnow

logger = structlog.get_logger(__name__)


class SubscriptionService:
    """Service layer for subscription lifecycle operations."""

    def __init__(
        self,
        db: AsyncSession,
        stripe_adapter: StripeAdapter | None = None,
        config: Settings = settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize subscription service with database session and payment adapter."""
        self.db = db
        self.stripe = stripe_adapter
        self.config = config
        self.clock = clock

    def _provider(self) -> StripeAdapter:
        if self.stripe is None:
            self.stripe = StripeAdapter(self.config)
        return self.stripe

    async def find_user(self, user_id: UUID | str | None = None, email: str | None = None) -> User:
        """
        Look up an account by id, else by email.

        Raises:
            ValidationError: If neither identifier is given
            UserNotFoundError: If no account matches
        """
        if user_id:
            if not isinstance(user_id, UUID):
                try:
                    user_id = UUID(str(user_id))
                except ValueError as e:
                    raise ValidationError("Invalid user ID", value=str(user_id)) from e
            query = select(User).where(User.id == user_id)
            label = f"user ID {user_id}"
        elif email:
            normalized = normalize_email(email)
            query = select(User).where(User.email == normalized)
            label = f"email {normalized}"
        else:
            raise ValidationError("User email or ID is required")

        result = await self.db.execute(query.execution_options(populate_existing=True))
        user = result.scalar_one_or_none()
        if user is None:
            raise UserNotFoundError(f"User not found for {label}")
        return user

    async def find_by_customer(self, customer_id: str) -> User | None:
        result = await self.db.execute(
            select(User)
            .where(User.stripe_customer_id == customer_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _apply(self, user: User, transition: Transition) -> Transition:
        """Write a transition's changes to the account row."""
        if transition.is_noop:
            logger.info(
                "subscription_transition_noop",
                user_id=str(user.id),
                lifecycle_event=transition.event,
                branch=transition.branch,
            )
            return transition

        if Effect.PERSIST in transition.effects:
            for column, value in transition.changes.items():
                setattr(user, column, value)
            await self.db.flush()

        metrics.subscription_transitions_total.labels(
            event=transition.event,
            target_state=transition.target.value,
        ).inc()
        logger.info(
            "subscription_transition",
            user_id=str(user.id),
            email=user.email,
            lifecycle_event=transition.event,
            branch=transition.branch,
            from_state=transition.before.state(self.clock()).value,
            to_state=transition.target.value,
        )
        return transition

    # User actions

    async def create_checkout(self, user_id: UUID | str | None = None, email: str | None = None) -> CheckoutResponse:
        """
        Create a provider checkout session for the one-time trial.

        Raises:
            UserNotFoundError: If the account does not exist
            TrialAlreadyUsedError: If the account already started a trial
            UpstreamFailureError: If the provider call fails
        """
        user = await self.find_user(user_id, email)
        if user.trial_started_at is not None:
            logger.info("checkout_rejected_trial_used", user_id=str(user.id), email=user.email)
            raise TrialAlreadyUsedError()

        url = await self._provider().create_checkout_session(user_id=str(user.id), email=user.email)
        if not url:
            raise UpstreamFailureError("Checkout session has no URL")

        metrics.checkout_sessions_created_total.inc()
        logger.info("checkout_session_created", user_id=str(user.id), email=user.email)
        return CheckoutResponse(url=url)

    async def cancel(self, user_id: UUID | str | None = None, email: str | None = None) -> CancelResponse:
        """
        Cancel the caller's subscription.

        With a provider customer, the first active or trialing subscription
        not already cancelling is set to cancel at period end and the flag
        is mirrored locally; status stays active until the provider confirms.
        Without one, a running trial is ended immediately.

        Raises:
            UserNotFoundError: If the account does not exist
            NoActiveSubscriptionError: If there is nothing to cancel
        """
        user = await self.find_user(user_id, email)
        now = self.clock()
        snapshot = SubscriptionSnapshot.from_user(user)

        if not user.stripe_customer_id:
            if not user.is_trial:
                logger.warning("cancel_nothing_to_cancel", user_id=str(user.id), email=user.email)
                raise NoActiveSubscriptionError()
            transition = await self._apply(user, on_trial_canceled(snapshot, TrialCanceled(), now))
            return CancelResponse(
                status="success",
                message="Trial cancelled successfully.",
                subscription_end_date=user.subscription_end_date,
                lifecycle_state=transition.target,
            )

        subscriptions = await self._provider().list_subscriptions(user.stripe_customer_id)
        cancellable = [
            sub for sub in subscriptions
            if sub["status"] in CANCELLABLE_STATUSES and not sub["cancel_at_period_end"]
        ]

        if not cancellable:
            already = next((sub for sub in subscriptions if sub["cancel_at_period_end"]), None)
            if already is None:
                logger.warning(
                    "cancel_no_provider_subscription",
                    user_id=str(user.id),
                    customer_id=user.stripe_customer_id,
                    subscription_count=len(subscriptions),
                )
                raise NoActiveSubscriptionError("No active subscription found to cancel")
            return CancelResponse(
                status="already_canceling",
                message="Subscription is already set to cancel at period end.",
                subscription_end_date=already["current_period_end"] or already["cancel_at"],
                lifecycle_state=snapshot.state(now),
            )

        target = cancellable[0]
        canceled = await self._provider().cancel_at_period_end(target["id"])
        period_end = canceled["current_period_end"] or target["current_period_end"]
        if period_end is None:
            raise UpstreamFailureError("Cancelled subscription has no period end")

        try:
            transition = await self._apply(user, on_cancel_scheduled(snapshot, CancelScheduled(period_end), now))
        except SQLAlchemyError:
            # Provider already accepted the cancellation; needs reconciliation
            logger.error(
                "cancel_local_mirror_failed",
                user_id=str(user.id),
                subscription_id=canceled["id"],
            )
            raise

        return CancelResponse(
            status="success",
            message="Subscription will be canceled at the end of the current period.",
            subscription_end_date=period_end,
            lifecycle_state=transition.target,
        )

    async def get_status(self, user_id: UUID | str | None = None, email: str | None = None) -> SubscriptionStatusResponse:
        """Derive the lifecycle state from the stored subscription flags."""
        user = await self.find_user(user_id, email)
        now = self.clock()
        snapshot = SubscriptionSnapshot.from_user(user)
        state = snapshot.state(now)
        in_trial = state in (LifecycleState.TRIAL, LifecycleState.TRIAL_CANCELING)

        return SubscriptionStatusResponse(
            status=state,
            details=SubscriptionDetails(
                type="standard" if state == LifecycleState.FREE else "premium",
                is_trial_active=in_trial,
                trial_ends_at=user.trial_end_date if in_trial else None,
                subscription_ends_at=user.subscription_end_date if state != LifecycleState.FREE else None,
                had_trial=state == LifecycleState.FREE and user.trial_started_at is not None,
                is_canceled=user.cancel_at_period_end,
                canceled_during_trial=state == LifecycleState.TRIAL_CANCELING,
            ),
        )

    # Provider events

    async def complete_checkout(
        self,
        customer_id: str,
        user_id: UUID | str | None = None,
        email: str | None = None,
    ) -> Transition:
        """
        Start the trial after a completed checkout.

        Raises:
            UserNotFoundError: If the account does not exist
            TrialAlreadyUsedError: If the account already started a trial
        """
        user = await self.find_user(user_id, email)
        now = self.clock()
        transition = on_checkout_completed(
            SubscriptionSnapshot.from_user(user),
            CheckoutCompleted(customer_id),
            now,
            self.config.trial_days,
        )
        return await self._apply(user, transition)

    async def trial_will_end(self, customer_id: str) -> Transition | None:
        """
        Flag an upcoming trial conversion.

        Best-effort: lookup and write failures are logged, not raised.
        """
        try:
            user = await self.find_by_customer(customer_id)
            if user is None:
                logger.warning("trial_will_end_user_not_found", customer_id=customer_id)
                return None
            transition = on_trial_will_end(SubscriptionSnapshot.from_user(user), TrialWillEnd(customer_id), self.clock())
            async with self.db.begin_nested():
                await self._apply(user, transition)
        except SQLAlchemyError as e:
            logger.warning("trial_will_end_update_failed", customer_id=customer_id, error=str(e))
            return None
        except Exception as e:
            # Informational notice, never fails the webhook
            logger.warning(
                "trial_will_end_unexpected_error",
                customer_id=customer_id,
                error_type=type(e).__name__,
                error=str(e),
                exc_info=True,
            )
            return None

        if Effect.NOTIFY_TRIAL_ENDING in transition.effects:
            logger.info(
                "trial_ending_notice",
                user_id=str(user.id),
                email=user.email,
                trial_end_date=user.trial_end_date.isoformat() if user.trial_end_date else None,
            )
        return transition

    async def update_subscription(self, event: SubscriptionUpdated) -> Transition | None:
        """Mirror a provider subscription update. Unknown customers are logged and dropped."""
        user = await self.find_by_customer(event.customer_id)
        if user is None:
            logger.warning(
                "subscription_updated_user_not_found",
                customer_id=event.customer_id,
                status=event.status,
            )
            return None
        transition = on_subscription_updated(SubscriptionSnapshot.from_user(user), event, self.clock())
        return await self._apply(user, transition)

    async def delete_subscription(self, event: SubscriptionDeleted) -> Transition | None:
        """Force an account back to free. Unknown customers are logged and dropped."""
        user = await self.find_by_customer(event.customer_id)
        if user is None:
            logger.warning("subscription_deleted_user_not_found", customer_id=event.customer_id)
            return None
        transition = on_subscription_deleted(SubscriptionSnapshot.from_user(user), event, self.clock())
        return await self._apply(user, transition)
