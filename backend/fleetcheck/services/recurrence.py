"""Next-run calculation for recurring batch schedules."""
import calendar
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from ..enums import Frequency
from ..schemas.batch import ScheduleSpec
from ..utils.time_utils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

CUSTOM_EXPRESSION = re.compile(r"^\s*every\s+(\d+)\s+(minute|hour|day|week)s?\s*$", re.IGNORECASE)

CUSTOM_UNITS = {
    "minute": timedelta(minutes=1),
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
}


def sunday_based_weekday(moment: datetime) -> int:
    """Day of week with 0 = Sunday ... 6 = Saturday."""
    return (moment.weekday() + 1) % 7


def add_months(moment: datetime, months: int, day: Optional[int] = None) -> datetime:
    """Advance by whole months, clamping the day to the target month's length."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return moment.replace(year=year, month=month, day=min(day or moment.day, last_day))


def _at_time(moment: datetime, time_of_day: Optional[str]) -> datetime:
    if not time_of_day:
        return moment
    hour, minute = (int(part) for part in time_of_day.split(":"))
    return moment.replace(hour=hour, minute=minute, second=0, microsecond=0)


def next_run(schedule: ScheduleSpec, from_time: Optional[datetime] = None) -> Optional[datetime]:
    """Compute the next execution time after `from_time` (default: now).

    Pure function. Times in and out are naive UTC; `schedule.time`,
    `day_of_week` and `day_of_month` are interpreted in `schedule.timezone`.
    Returns None once the schedule's end_date has passed.

    WEEKLY never returns the same day: a zero day offset means next week.
    Unrecognised CUSTOM expressions fall back to one hour.
    """
    if from_time is None:
        from_time = utcnow()
    tz = ZoneInfo(schedule.timezone)
    local = to_naive_utc(from_time).replace(tzinfo=timezone.utc).astimezone(tz)
    interval = schedule.interval
    frequency = schedule.frequency

    if frequency == Frequency.ONCE:
        result = local
    elif frequency == Frequency.HOURLY:
        result = local + timedelta(hours=interval)
    elif frequency == Frequency.DAILY:
        result = _at_time(local + timedelta(days=interval), schedule.time)
    elif frequency == Frequency.WEEKLY:
        if schedule.day_of_week is None:
            offset = 7
        else:
            offset = (schedule.day_of_week - sunday_based_weekday(local) + 7) % 7 or 7
        offset += 7 * (interval - 1)
        result = _at_time(local + timedelta(days=offset), schedule.time)
    elif frequency == Frequency.MONTHLY:
        result = _at_time(add_months(local, interval, schedule.day_of_month), schedule.time)
    elif frequency == Frequency.QUARTERLY:
        result = _at_time(add_months(local, 3 * interval, schedule.day_of_month), schedule.time)
    elif frequency == Frequency.YEARLY:
        result = _at_time(add_months(local, 12 * interval, schedule.day_of_month), schedule.time)
    else:
        result = local + _custom_step(schedule.expression)

    result = to_naive_utc(result)
    end_date = to_naive_utc(schedule.end_date)
    if end_date is not None and result > end_date:
        return None
    return result


def _custom_step(expression: Optional[str]) -> timedelta:
    match = CUSTOM_EXPRESSION.match(expression or "")
    if match and int(match.group(1)) > 0:
        return int(match.group(1)) * CUSTOM_UNITS[match.group(2).lower()]
    logger.warning(f"Unsupported custom schedule expression {expression!r}, falling back to hourly")
    return timedelta(hours=1)
