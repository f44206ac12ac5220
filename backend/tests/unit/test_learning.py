"""Unit tests for the learning percentage calculation."""
import pytest

from metering.services.learning_service import (
    FREE_MAX_PERCENTAGE,
    MIN_LEARNING_PERCENTAGE,
    PREMIUM_MAX_PERCENTAGE,
    learning_percentage,
)


@pytest.mark.parametrize("premium", [False, True])
def test_no_saved_responses_gives_minimum(premium: bool) -> None:
    assert learning_percentage(0, premium) == MIN_LEARNING_PERCENTAGE


def test_free_tier_grows_by_five() -> None:
    assert learning_percentage(3, premium=False) == 15


def test_premium_tier_grows_faster() -> None:
    assert learning_percentage(3, premium=True) == 30


@pytest.mark.parametrize("premium,cap", [(False, FREE_MAX_PERCENTAGE), (True, PREMIUM_MAX_PERCENTAGE)])
def test_large_counts_hit_the_cap_exactly(premium: bool, cap: int) -> None:
    assert learning_percentage(1_000, premium) == cap
    assert learning_percentage(14 if not premium else 10, premium) == cap


def test_negative_count_is_floored_at_minimum() -> None:
    assert learning_percentage(-4, premium=False) == MIN_LEARNING_PERCENTAGE
