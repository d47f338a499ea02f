"""Weekly registration window arithmetic.

Windows are expressed on a fixed UTC+7 civil clock with no daylight saving.
Days run 0=Sunday..6=Saturday. A window whose close point precedes its open
point wraps across the end of the week.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta

from .models import RegistrationWindowSchedule
from .utils import as_utc

CIVIL_OFFSET = timedelta(hours=7)
MINUTES_PER_DAY = 24 * 60


def civil_now(now: datetime) -> datetime:
    """Convert an instant to naive UTC+7 civil time."""
    return as_utc(now).replace(tzinfo=None) + CIVIL_OFFSET


def civil_weekday(moment: datetime) -> int:
    """Day of week with Sunday as 0."""
    return (moment.weekday() + 1) % 7


def week_minute(day: int, hour: int, minute: int) -> int:
    return day * MINUTES_PER_DAY + hour * 60 + minute


def is_open(schedule: RegistrationWindowSchedule, now: datetime) -> bool:
    """Return whether ``now`` falls inside the weekly window.

    The open point is inclusive and the close point exclusive. When the open
    and close points coincide the window is always closed.
    """
    civil = civil_now(now)
    now_total = week_minute(civil_weekday(civil), civil.hour, civil.minute)
    open_total = week_minute(schedule.open_day, schedule.open_hour, schedule.open_minute)
    close_total = week_minute(schedule.close_day, schedule.close_hour, schedule.close_minute)

    if open_total <= close_total:
        return open_total <= now_total < close_total
    return now_total >= open_total or now_total < close_total


def next_week_start(now: datetime) -> date:
    """Monday of the civil week following ``now``."""
    today = civil_now(now).date()
    return today + timedelta(days=7 - today.weekday())
