"""Unit tests for the swipe limit policy."""
from datetime import datetime, timedelta, timezone

from metering.services.limit_policy import Entitlement, Limits, decide

NOW = datetime(2025, 6, 15, 18, 0, tzinfo=timezone.utc)
LIMITS = Limits(free_daily_limit=10, anonymous_limit=14)


def test_free_account_at_limit_requires_upgrade() -> None:
    decision = decide(10, Entitlement(), LIMITS, NOW)

    assert decision.can_swipe is False
    assert decision.requires_upgrade is True
    assert decision.requires_sign_in is None
    assert decision.daily_swipes == 10


def test_free_account_below_limit_can_swipe() -> None:
    decision = decide(9, Entitlement(), LIMITS, NOW)

    assert decision.can_swipe is True
    assert decision.requires_upgrade is False
    assert decision.is_premium is False


def test_anonymous_at_limit_requires_sign_in() -> None:
    decision = decide(14, None, LIMITS, NOW)

    assert decision.can_swipe is False
    assert decision.requires_sign_in is True
    assert decision.requires_upgrade is None


def test_anonymous_uses_anonymous_limit_not_free_limit() -> None:
    assert decide(12, None, LIMITS, NOW).can_swipe is True


def test_active_subscription_is_unlimited() -> None:
    decision = decide(500, Entitlement(is_active=True), LIMITS, NOW)

    assert decision.can_swipe is True
    assert decision.is_premium is True
    assert decision.is_trial is False
    assert decision.requires_upgrade is None


def test_running_trial_is_unlimited_and_reports_end() -> None:
    trial_end = NOW + timedelta(days=2)
    decision = decide(
        50,
        Entitlement(is_active=False, is_trial=True, trial_end_date=trial_end),
        LIMITS,
        NOW,
    )

    assert decision.can_swipe is True
    assert decision.is_trial is True
    assert decision.is_premium is False
    assert decision.trial_ends_at == trial_end


def test_expired_trial_without_active_status_falls_back_to_free_limit() -> None:
    entitlement = Entitlement(is_active=False, is_trial=True, trial_end_date=NOW - timedelta(minutes=1))

    decision = decide(10, entitlement, LIMITS, NOW)

    assert decision.can_swipe is False
    assert decision.requires_upgrade is True
    assert decision.is_trial is False


def test_expired_trial_with_active_flag_is_trusted() -> None:
    """Stored flags are not second-guessed: an uncorrected expired trial stays premium."""
    entitlement = Entitlement(is_active=True, is_trial=True, trial_end_date=NOW - timedelta(hours=1))

    decision = decide(10, entitlement, LIMITS, NOW)

    assert decision.can_swipe is True
    assert decision.is_premium is True
    assert decision.is_trial is False
