"""
Provider quota day arithmetic.

The upstream provider resets daily quotas at midnight in a single fixed
timezone, regardless of where the caller runs. Every day-boundary decision
in the gateway goes through these helpers.
"""

import math
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

DEFAULT_RESET_TIMEZONE = "America/Los_Angeles"


def _zone(tz_name: str) -> ZoneInfo:
    return ZoneInfo(tz_name)


def provider_day(now: datetime, tz_name: str = DEFAULT_RESET_TIMEZONE) -> date:
    """Calendar day that `now` falls on in the provider timezone.

    Args:
        now: Timezone-aware instant
        tz_name: IANA name of the provider timezone

    Returns:
        The provider-local date
    """
    return now.astimezone(_zone(tz_name)).date()


def next_reset_instant(now: datetime, tz_name: str = DEFAULT_RESET_TIMEZONE) -> datetime:
    """Next provider-local midnight strictly after `now`.

    The result is expressed in the provider timezone; compare it with other
    aware datetimes freely.
    """
    zone = _zone(tz_name)
    tomorrow = now.astimezone(zone).date() + timedelta(days=1)
    return datetime.combine(tomorrow, time.min, tzinfo=zone)


def seconds_until_reset(now: datetime, tz_name: str = DEFAULT_RESET_TIMEZONE) -> int:
    """Whole seconds (rounded up) until the next daily reset."""
    delta = next_reset_instant(now, tz_name) - now
    return max(0, math.ceil(delta.total_seconds()))
