"""Unit tests for the local-midnight reset schedule."""
from datetime import date, datetime, timezone

import pytest

from metering.exceptions import NotConfiguredError
from metering.utils.clock import (
    format_time_until_reset,
    get_zone,
    is_past_reset,
    local_date,
    local_midnight,
    next_reset_time,
    prune_history,
)

LA = get_zone("America/Los_Angeles")


def test_local_midnight_in_summer_is_seven_hours_behind_utc() -> None:
    now = datetime(2025, 6, 15, 18, 0, tzinfo=timezone.utc)

    assert local_midnight(now, LA) == datetime(2025, 6, 15, 7, 0, tzinfo=timezone.utc)


def test_local_midnight_in_winter_is_eight_hours_behind_utc() -> None:
    now = datetime(2025, 1, 15, 18, 0, tzinfo=timezone.utc)

    assert local_midnight(now, LA) == datetime(2025, 1, 15, 8, 0, tzinfo=timezone.utc)


def test_early_utc_morning_belongs_to_previous_local_day() -> None:
    now = datetime(2025, 6, 15, 3, 0, tzinfo=timezone.utc)

    assert local_date(now, LA) == date(2025, 6, 14)


def test_next_reset_across_spring_forward_is_23_hours_after_midnight() -> None:
    # 2025-03-09 is the spring-forward day in Los Angeles
    now = datetime(2025, 3, 9, 8, 0, tzinfo=timezone.utc)

    assert local_midnight(now, LA) == datetime(2025, 3, 9, 8, 0, tzinfo=timezone.utc)
    assert next_reset_time(now, LA) == datetime(2025, 3, 10, 7, 0, tzinfo=timezone.utc)


def test_reset_due_when_last_reset_precedes_local_midnight() -> None:
    now = datetime(2025, 6, 15, 18, 0, tzinfo=timezone.utc)

    assert is_past_reset(datetime(2025, 6, 15, 6, 59, tzinfo=timezone.utc), now, LA) is True
    assert is_past_reset(datetime(2025, 6, 15, 7, 0, tzinfo=timezone.utc), now, LA) is False
    assert is_past_reset(None, now, LA) is True


def test_countdown_format() -> None:
    now = datetime(2025, 6, 15, 18, 48, tzinfo=timezone.utc)

    assert format_time_until_reset(now, LA) == "12h 12m"


def test_history_older_than_retention_is_pruned() -> None:
    history = {"2025-03-16": 4, "2025-03-17": 2, "2025-06-14": 9}

    pruned = prune_history(history, date(2025, 6, 15), retention_days=90)

    assert pruned == {"2025-03-17": 2, "2025-06-14": 9}


def test_unknown_zone_is_a_configuration_error() -> None:
    with pytest.raises(NotConfiguredError):
        get_zone("Mars/Olympus_Mons")
