"""Subscription lifecycle as explicit states and per-event transitions.

The stored subscription columns are read into an immutable
``SubscriptionSnapshot``. Each provider event or user action has one
transition function that returns a ``Transition``: the column changes to
write, the lifecycle state they lead to, and the side effects the caller
must perform. Nothing here touches the store or the payment provider.

States::

    free -> trial -> {trial-canceling | premium} -> canceling -> free
"""
import dataclasses
import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Mapping

from metering.exceptions import NoActiveSubscriptionError, TrialAlreadyUsedError
from metering.models.user import SubscriptionStatus, SubscriptionType, User

LAPSED_STATUSES = frozenset({"canceled", "unpaid", "past_due"})


class LifecycleState(str, enum.Enum):
    FREE = "free"
    TRIAL = "trial"
    TRIAL_CANCELING = "trial-canceling"
    PREMIUM = "premium"
    CANCELING = "canceling"


class Effect(enum.Enum):
    """Side effects a transition asks its caller to carry out."""

    PERSIST = "persist"
    NOTIFY_TRIAL_ENDING = "notify_trial_ending"


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Subscription columns of an account at one point in time."""

    subscription_type: SubscriptionType = SubscriptionType.STANDARD
    subscription_status: SubscriptionStatus = SubscriptionStatus.INACTIVE
    is_trial: bool = False
    trial_started_at: datetime | None = None
    trial_end_date: datetime | None = None
    trial_ending_soon: bool = False
    subscription_end_date: datetime | None = None
    cancel_at_period_end: bool = False
    stripe_customer_id: str | None = None
    subscription_updated_at: datetime | None = None

    @classmethod
    def from_user(cls, user: User) -> "SubscriptionSnapshot":
        return cls(**{f.name: getattr(user, f.name) for f in dataclasses.fields(cls)})

    def replace(self, changes: Mapping[str, Any]) -> "SubscriptionSnapshot":
        return dataclasses.replace(self, **changes)

    def state(self, now: datetime) -> LifecycleState:
        """Derive the lifecycle state from the stored flags."""
        if self.is_trial and self.trial_end_date is not None and self.trial_end_date > now:
            return LifecycleState.TRIAL_CANCELING if self.cancel_at_period_end else LifecycleState.TRIAL
        if self.subscription_status == SubscriptionStatus.ACTIVE:
            return LifecycleState.CANCELING if self.cancel_at_period_end else LifecycleState.PREMIUM
        return LifecycleState.FREE

    def is_terminal_free(self) -> bool:
        """Fully downgraded, as left by a subscription deletion."""
        return (
            self.subscription_status == SubscriptionStatus.INACTIVE
            and self.subscription_type == SubscriptionType.STANDARD
            and not self.is_trial
            and self.trial_end_date is None
            and not self.cancel_at_period_end
            and self.subscription_end_date is not None
        )


# Events


@dataclass(frozen=True)
class CheckoutCompleted:
    customer_id: str


@dataclass(frozen=True)
class TrialWillEnd:
    customer_id: str


@dataclass(frozen=True)
class SubscriptionUpdated:
    customer_id: str
    status: str
    cancel_at_period_end: bool
    current_period_end: datetime
    trial_end: datetime | None = None


@dataclass(frozen=True)
class SubscriptionDeleted:
    customer_id: str


@dataclass(frozen=True)
class CancelScheduled:
    """The provider accepted a cancel-at-period-end request."""

    current_period_end: datetime


@dataclass(frozen=True)
class TrialCanceled:
    """A trial with no provider customer was cancelled by the user."""


@dataclass(frozen=True)
class Transition:
    """Result of applying one event to a snapshot."""

    event: str
    branch: str
    before: SubscriptionSnapshot
    after: SubscriptionSnapshot
    target: LifecycleState
    changes: Mapping[str, Any] = field(default_factory=dict)
    effects: tuple[Effect, ...] = ()

    @property
    def is_noop(self) -> bool:
        return not self.changes


def _transition(
    event: str,
    branch: str,
    before: SubscriptionSnapshot,
    now: datetime,
    changes: Mapping[str, Any] | None = None,
    effects: tuple[Effect, ...] = (Effect.PERSIST,),
) -> Transition:
    changes = dict(changes or {})
    after = before.replace(changes)
    return Transition(
        event=event,
        branch=branch,
        before=before,
        after=after,
        target=after.state(now),
        changes=changes,
        effects=effects if changes else (),
    )


def on_checkout_completed(
    snapshot: SubscriptionSnapshot,
    event: CheckoutCompleted,
    now: datetime,
    trial_days: int,
) -> Transition:
    """
    Start the trial granted by a completed checkout.

    Raises:
        TrialAlreadyUsedError: If the account has already started a trial
    """
    if snapshot.trial_started_at is not None:
        raise TrialAlreadyUsedError(customer_id=event.customer_id)

    return _transition(
        "checkout.session.completed",
        "trial_started",
        snapshot,
        now,
        {
            "subscription_type": SubscriptionType.PREMIUM,
            "subscription_status": SubscriptionStatus.ACTIVE,
            "is_trial": True,
            "trial_started_at": now,
            "trial_end_date": now + timedelta(days=trial_days),
            "trial_ending_soon": False,
            "stripe_customer_id": event.customer_id,
            "cancel_at_period_end": False,
            "subscription_updated_at": now,
        },
    )


def on_trial_will_end(snapshot: SubscriptionSnapshot, event: TrialWillEnd, now: datetime) -> Transition:
    """Flag that the trial is about to convert. Informational only."""
    if snapshot.trial_ending_soon or not snapshot.is_trial:
        return _transition("customer.subscription.trial_will_end", "noop", snapshot, now)
    return _transition(
        "customer.subscription.trial_will_end",
        "trial_ending_flagged",
        snapshot,
        now,
        {"trial_ending_soon": True},
        effects=(Effect.PERSIST, Effect.NOTIFY_TRIAL_ENDING),
    )


def on_subscription_updated(
    snapshot: SubscriptionSnapshot,
    event: SubscriptionUpdated,
    now: datetime,
) -> Transition:
    """
    Mirror a provider subscription update.

    Branches are checked in priority order: trial conversion, scheduled
    cancellation, plain activation, lapse. A ``trialing`` update only
    mirrors the cancel flag; any other status is ignored.
    """
    name = "customer.subscription.updated"
    period_end = event.current_period_end

    if (
        event.status == "active"
        and snapshot.is_trial
        and event.trial_end is not None
        and event.trial_end <= now
    ):
        return _transition(name, "trial_converted", snapshot, now, {
            "is_trial": False,
            "trial_end_date": None,
            "trial_ending_soon": False,
            "subscription_status": SubscriptionStatus.ACTIVE,
            "subscription_type": SubscriptionType.PREMIUM,
            "cancel_at_period_end": event.cancel_at_period_end,
            "subscription_end_date": period_end,
            "subscription_updated_at": now,
        })

    if event.status == "active" and event.cancel_at_period_end:
        return _transition(name, "cancel_scheduled", snapshot, now, {
            "subscription_status": SubscriptionStatus.ACTIVE,
            "cancel_at_period_end": True,
            "subscription_end_date": period_end,
            "subscription_updated_at": now,
        })

    if event.status == "active":
        return _transition(name, "premium_confirmed", snapshot, now, {
            "subscription_status": SubscriptionStatus.ACTIVE,
            "subscription_type": SubscriptionType.PREMIUM,
            "is_trial": False,
            "cancel_at_period_end": False,
            "subscription_end_date": period_end,
            "subscription_updated_at": now,
        })

    if event.status in LAPSED_STATUSES:
        return _transition(name, "lapsed", snapshot, now, {
            "subscription_status": SubscriptionStatus.INACTIVE,
            "subscription_type": SubscriptionType.STANDARD,
            "is_trial": False,
            "subscription_end_date": period_end,
            "subscription_updated_at": now,
        })

    if event.status == "trialing" and snapshot.is_trial:
        return _transition(name, "trial_cancel_mirrored", snapshot, now, {
            "cancel_at_period_end": event.cancel_at_period_end,
            "subscription_end_date": period_end if event.cancel_at_period_end else snapshot.subscription_end_date,
            "subscription_updated_at": now,
        })

    return _transition(name, "ignored_status", snapshot, now)


def on_subscription_deleted(
    snapshot: SubscriptionSnapshot,
    event: SubscriptionDeleted,
    now: datetime,
) -> Transition:
    """Force the account back to free. Replays leave the record unchanged."""
    name = "customer.subscription.deleted"
    if snapshot.is_terminal_free():
        return _transition(name, "noop", snapshot, now)
    return _transition(name, "subscription_ended", snapshot, now, {
        "subscription_status": SubscriptionStatus.INACTIVE,
        "subscription_type": SubscriptionType.STANDARD,
        "is_trial": False,
        "trial_end_date": None,
        "trial_ending_soon": False,
        "subscription_end_date": now,
        "cancel_at_period_end": False,
        "subscription_updated_at": now,
    })


def on_cancel_scheduled(snapshot: SubscriptionSnapshot, event: CancelScheduled, now: datetime) -> Transition:
    """Mirror a user cancellation accepted by the provider. Access runs to period end."""
    return _transition("user.cancel_requested", "cancel_scheduled", snapshot, now, {
        "subscription_status": SubscriptionStatus.ACTIVE,
        "cancel_at_period_end": True,
        "subscription_end_date": event.current_period_end,
        "subscription_updated_at": now,
    })


def on_trial_canceled(snapshot: SubscriptionSnapshot, event: TrialCanceled, now: datetime) -> Transition:
    """
    End a trial that never reached the provider, immediately.

    Raises:
        NoActiveSubscriptionError: If no trial is running
    """
    if not snapshot.is_trial:
        raise NoActiveSubscriptionError()
    return _transition("user.cancel_requested", "trial_canceled", snapshot, now, {
        "is_trial": False,
        "trial_end_date": None,
        "trial_ending_soon": False,
        "subscription_status": SubscriptionStatus.INACTIVE,
        "subscription_type": SubscriptionType.STANDARD,
        "subscription_updated_at": now,
    })
