"""Wall-clock helpers for the daily usage reset.

All inputs and outputs are aware instants. Local calendar arithmetic is
done in a named IANA zone so the reset boundary follows daylight-saving
changes.
"""
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from metering.exceptions import NotConfiguredError


def utcnow() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@lru_cache(maxsize=8)
def get_zone(name: str) -> ZoneInfo:
    """
    Resolve an IANA zone name.

    Raises:
        NotConfiguredError: If the zone is unknown
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise NotConfiguredError(f"Unknown reset timezone: {name}") from e


def local_date(instant: datetime, zone: ZoneInfo) -> date:
    """Calendar date of ``instant`` in ``zone``."""
    return instant.astimezone(zone).date()


def _start_of_day(day: date, zone: ZoneInfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=zone).astimezone(timezone.utc)


def local_midnight(now: datetime, zone: ZoneInfo) -> datetime:
    """The most recent local midnight in ``zone`` at or before ``now``, as UTC."""
    return _start_of_day(local_date(now, zone), zone)


def next_reset_time(now: datetime, zone: ZoneInfo) -> datetime:
    """The next local midnight in ``zone`` after ``now``, as UTC."""
    return _start_of_day(local_date(now, zone) + timedelta(days=1), zone)


def is_past_reset(last_reset: datetime | None, now: datetime, zone: ZoneInfo) -> bool:
    """True when ``last_reset`` precedes today's local midnight (or was never set)."""
    if last_reset is None:
        return True
    return last_reset < local_midnight(now, zone)


def format_time_until_reset(now: datetime, zone: ZoneInfo) -> str:
    """Countdown to the next reset, e.g. ``"5h 12m"``."""
    remaining = int((next_reset_time(now, zone) - now).total_seconds())
    hours, remainder = divmod(max(remaining, 0), 3600)
    return f"{hours}h {remainder // 60}m"


def history_key(day: date) -> str:
    return day.isoformat()


def prune_history(history: dict[str, int], today: date, retention_days: int) -> dict[str, int]:
    """Drop history entries older than ``retention_days`` before ``today``."""
    cutoff = history_key(today - timedelta(days=retention_days))
    # ISO dates sort lexically
    return {day: count for day, count in history.items() if day >= cutoff}
