"""Unit tests for the subscription lifecycle transitions."""
from datetime import datetime, timedelta, timezone

import pytest

from metering.exceptions import NoActiveSubscriptionError, TrialAlreadyUsedError
from metering.models.user import SubscriptionStatus, SubscriptionType
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
    on_cancel_scheduled,
    on_checkout_completed,
    on_subscription_deleted,
    on_subscription_updated,
    on_trial_canceled,
    on_trial_will_end,
)

NOW = datetime(2025, 6, 15, 18, 0, tzinfo=timezone.utc)
PERIOD_END = NOW + timedelta(days=30)

FREE = SubscriptionSnapshot()
TRIAL = SubscriptionSnapshot(
    subscription_type=SubscriptionType.PREMIUM,
    subscription_status=SubscriptionStatus.ACTIVE,
    is_trial=True,
    trial_started_at=NOW - timedelta(days=1),
    trial_end_date=NOW + timedelta(days=2),
    stripe_customer_id="cus_1",
)
PREMIUM = SubscriptionSnapshot(
    subscription_type=SubscriptionType.PREMIUM,
    subscription_status=SubscriptionStatus.ACTIVE,
    trial_started_at=NOW - timedelta(days=20),
    subscription_end_date=NOW + timedelta(days=10),
    stripe_customer_id="cus_1",
)


def _updated(status: str, cancel: bool = False, trial_end: datetime | None = None) -> SubscriptionUpdated:
    return SubscriptionUpdated(
        customer_id="cus_1",
        status=status,
        cancel_at_period_end=cancel,
        current_period_end=PERIOD_END,
        trial_end=trial_end,
    )


class TestDerivedState:
    def test_free(self) -> None:
        assert FREE.state(NOW) is LifecycleState.FREE

    def test_trial_and_trial_canceling(self) -> None:
        assert TRIAL.state(NOW) is LifecycleState.TRIAL
        assert TRIAL.replace({"cancel_at_period_end": True}).state(NOW) is LifecycleState.TRIAL_CANCELING

    def test_premium_and_canceling(self) -> None:
        assert PREMIUM.state(NOW) is LifecycleState.PREMIUM
        assert PREMIUM.replace({"cancel_at_period_end": True}).state(NOW) is LifecycleState.CANCELING


class TestCheckoutCompleted:
    def test_starts_three_day_trial(self) -> None:
        transition = on_checkout_completed(FREE, CheckoutCompleted("cus_new"), NOW, trial_days=3)

        after = transition.after
        assert transition.target is LifecycleState.TRIAL
        assert after.subscription_type is SubscriptionType.PREMIUM
        assert after.subscription_status is SubscriptionStatus.ACTIVE
        assert after.is_trial is True
        assert after.trial_started_at == NOW
        assert after.trial_end_date == NOW + timedelta(days=3)
        assert after.stripe_customer_id == "cus_new"
        assert after.cancel_at_period_end is False
        assert transition.effects == (Effect.PERSIST,)

    def test_rejects_second_trial(self) -> None:
        used = FREE.replace({"trial_started_at": NOW - timedelta(days=40)})

        with pytest.raises(TrialAlreadyUsedError):
            on_checkout_completed(used, CheckoutCompleted("cus_new"), NOW, trial_days=3)


class TestTrialWillEnd:
    def test_flags_trial_and_asks_for_notice(self) -> None:
        transition = on_trial_will_end(TRIAL, TrialWillEnd("cus_1"), NOW)

        assert transition.changes == {"trial_ending_soon": True}
        assert Effect.NOTIFY_TRIAL_ENDING in transition.effects

    def test_repeat_is_noop(self) -> None:
        flagged = TRIAL.replace({"trial_ending_soon": True})

        assert on_trial_will_end(flagged, TrialWillEnd("cus_1"), NOW).is_noop

    def test_without_trial_is_noop(self) -> None:
        assert on_trial_will_end(PREMIUM, TrialWillEnd("cus_1"), NOW).is_noop


class TestSubscriptionUpdated:
    def test_trial_converts_to_premium_once_trial_end_passed(self) -> None:
        transition = on_subscription_updated(TRIAL, _updated("active", trial_end=NOW - timedelta(minutes=5)), NOW)

        assert transition.branch == "trial_converted"
        assert transition.target is LifecycleState.PREMIUM
        assert transition.after.is_trial is False
        assert transition.after.trial_end_date is None
        assert transition.after.subscription_end_date == PERIOD_END

    def test_cancel_scheduled_keeps_access(self) -> None:
        transition = on_subscription_updated(PREMIUM, _updated("active", cancel=True), NOW)

        assert transition.branch == "cancel_scheduled"
        assert transition.target is LifecycleState.CANCELING
        assert transition.after.subscription_status is SubscriptionStatus.ACTIVE
        assert transition.after.subscription_end_date == PERIOD_END

    def test_trial_conversion_has_priority_over_cancel_flag(self) -> None:
        transition = on_subscription_updated(
            TRIAL, _updated("active", cancel=True, trial_end=NOW - timedelta(minutes=1)), NOW
        )

        assert transition.branch == "trial_converted"
        assert transition.after.cancel_at_period_end is True
        assert transition.target is LifecycleState.CANCELING

    def test_active_reaffirms_premium_and_clears_cancel(self) -> None:
        canceling = PREMIUM.replace({"cancel_at_period_end": True})

        transition = on_subscription_updated(canceling, _updated("active"), NOW)

        assert transition.branch == "premium_confirmed"
        assert transition.after.cancel_at_period_end is False
        assert transition.target is LifecycleState.PREMIUM

    @pytest.mark.parametrize("status", ["canceled", "unpaid", "past_due"])
    @pytest.mark.parametrize("snapshot", [TRIAL, PREMIUM], ids=["trial", "premium"])
    def test_lapsed_statuses_downgrade_regardless_of_trial(self, status: str, snapshot: SubscriptionSnapshot) -> None:
        transition = on_subscription_updated(snapshot, _updated(status), NOW)

        assert transition.branch == "lapsed"
        assert transition.after.subscription_status is SubscriptionStatus.INACTIVE
        assert transition.after.subscription_type is SubscriptionType.STANDARD
        assert transition.after.is_trial is False
        assert transition.target is LifecycleState.FREE

    def test_trialing_update_mirrors_cancel_flag(self) -> None:
        transition = on_subscription_updated(TRIAL, _updated("trialing", cancel=True), NOW)

        assert transition.branch == "trial_cancel_mirrored"
        assert transition.target is LifecycleState.TRIAL_CANCELING
        assert transition.after.is_trial is True

    def test_unknown_status_is_ignored(self) -> None:
        transition = on_subscription_updated(PREMIUM, _updated("incomplete"), NOW)

        assert transition.branch == "ignored_status"
        assert transition.is_noop
        assert transition.effects == ()

    def test_every_applied_branch_stamps_updated_at(self) -> None:
        for snapshot, event in [
            (TRIAL, _updated("active", trial_end=NOW - timedelta(minutes=1))),
            (PREMIUM, _updated("active", cancel=True)),
            (PREMIUM, _updated("active")),
            (PREMIUM, _updated("canceled")),
        ]:
            assert on_subscription_updated(snapshot, event, NOW).changes["subscription_updated_at"] == NOW


class TestSubscriptionDeleted:
    def test_forces_free(self) -> None:
        transition = on_subscription_deleted(TRIAL, SubscriptionDeleted("cus_1"), NOW)

        after = transition.after
        assert transition.target is LifecycleState.FREE
        assert after.is_trial is False
        assert after.trial_end_date is None
        assert after.subscription_end_date == NOW
        assert after.cancel_at_period_end is False

    def test_replay_leaves_record_unchanged(self) -> None:
        first = on_subscription_deleted(PREMIUM, SubscriptionDeleted("cus_1"), NOW)
        second = on_subscription_deleted(first.after, SubscriptionDeleted("cus_1"), NOW + timedelta(hours=1))

        assert second.is_noop
        assert second.after == first.after


class TestUserCancel:
    def test_cancel_scheduled_mirrors_period_end(self) -> None:
        transition = on_cancel_scheduled(PREMIUM, CancelScheduled(PERIOD_END), NOW)

        assert transition.after.cancel_at_period_end is True
        assert transition.after.subscription_end_date == PERIOD_END
        assert transition.after.subscription_status is SubscriptionStatus.ACTIVE
        assert transition.target is LifecycleState.CANCELING

    def test_local_trial_cancel_ends_trial_immediately(self) -> None:
        local_trial = TRIAL.replace({"stripe_customer_id": None})

        transition = on_trial_canceled(local_trial, TrialCanceled(), NOW)

        assert transition.target is LifecycleState.FREE
        assert transition.after.subscription_type is SubscriptionType.STANDARD
        assert transition.after.subscription_status is SubscriptionStatus.INACTIVE

    def test_local_cancel_without_trial_fails(self) -> None:
        with pytest.raises(NoActiveSubscriptionError):
            on_trial_canceled(FREE, TrialCanceled(), NOW)
