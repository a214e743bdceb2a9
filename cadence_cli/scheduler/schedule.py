"""Cron schedule helpers.

Validation, next-occurrence computation, APScheduler trigger parsing and
human readable descriptions for cron expressions. All datetimes are naive
UTC.
"""

import logging
from datetime import datetime, timedelta
from datetime import timezone as dt_timezone
from typing import Optional

from apscheduler.triggers.cron import CronTrigger
from croniter import croniter

logger = logging.getLogger(__name__)

# Fallback delay when a schedule cannot be parsed
FALLBACK_DELAY = timedelta(hours=1)

_KNOWN_SCHEDULES = {
    "* * * * *": "Every minute",
    "0 * * * *": "Every hour",
    "0 0 * * *": "Daily at midnight",
    "0 0 * * 0": "Weekly on Sunday at midnight",
    "0 0 1 * *": "Monthly on the 1st at midnight",
}

_CRON_WEEKDAYS = ["sun", "mon", "tue", "wed", "thu", "fri", "sat"]


def _utcnow() -> datetime:
    return datetime.now(dt_timezone.utc).replace(tzinfo=None)


def is_valid_cron(schedule: str) -> bool:
    """Check whether a 5- or 6-field cron expression is valid."""
    if not isinstance(schedule, str):
        return False
    parts = schedule.split()
    if len(parts) not in (5, 6):
        return False
    try:
        parse_cron_trigger(schedule)
    except ValueError:
        return False
    return True


def calculate_next_run(schedule: str, now: Optional[datetime] = None) -> datetime:
    """Calculate the next occurrence of a cron expression after ``now``.

    Six-field expressions carry seconds in the first field. Any expression
    that cannot be parsed yields ``now`` plus one hour.

    Args:
        schedule: Cron expression
        now: Reference time (naive UTC, defaults to current time)

    Returns:
        Next run time as naive UTC
    """
    now = now or _utcnow()

    try:
        parts = schedule.split()
        if len(parts) == 6:
            # croniter expects seconds as a trailing field
            expression = " ".join(parts[1:] + parts[:1])
        elif len(parts) == 5:
            expression = schedule
        else:
            raise ValueError(f"Expected 5 or 6 fields, got {len(parts)}")
        # Day and weekday must both match, as they do for CronTrigger
        return croniter(expression, now, day_or=False).get_next(datetime)
    except Exception as e:
        logger.error(f"Failed to calculate next run for schedule '{schedule}': {e}")
        return now + FALLBACK_DELAY


def _cron_weekday(token: str) -> int:
    """Crontab weekday number or name to 0-7 (0 and 7 are Sunday)."""
    token = token.lower()
    if token in _CRON_WEEKDAYS:
        return _CRON_WEEKDAYS.index(token)
    value = int(token)
    if not 0 <= value <= 7:
        raise ValueError(f"Weekday out of range: {token}")
    return value


def convert_day_of_week(field: str) -> str:
    """Translate a crontab weekday field into APScheduler day names.

    Crontab counts 0 (or 7) as Sunday while APScheduler 3 counts 0 as
    Monday, so numbers and steps are expanded to an explicit set of names.

    Raises:
        ValueError: If the field is malformed or uses ``L``/``#`` modifiers
    """
    if field == "*":
        return field

    days = set()
    for item in field.split(","):
        span, _, step_text = item.partition("/")
        step = int(step_text) if step_text else 1
        if step < 1:
            raise ValueError(f"Invalid weekday step: {item}")

        if span == "*":
            first, last = 0, 6
        elif "-" in span:
            start, end = span.split("-", 1)
            first, last = _cron_weekday(start), _cron_weekday(end)
            if last == 0 and first > 0:
                last = 7
            if first > last:
                raise ValueError(f"Invalid weekday range: {item}")
        else:
            first = _cron_weekday(span)
            last = 6 if step_text else first

        days.update(day % 7 for day in range(first, last + 1, step))

    if len(days) == 7:
        return "*"
    return ",".join(_CRON_WEEKDAYS[day] for day in sorted(days))


def parse_cron_trigger(schedule: str, timezone: str = "UTC") -> CronTrigger:
    """Parse a cron schedule string into a CronTrigger.

    Supports both 5-part (minute hour day month weekday) and
    6-part (second minute hour day month weekday) cron formats. Weekday
    numbers follow crontab (0 = Sunday) in both.

    Args:
        schedule: Cron schedule string
        timezone: Timezone the trigger fires in

    Returns:
        CronTrigger instance

    Raises:
        ValueError: If the expression is malformed
    """
    parts = schedule.split()

    if len(parts) == 6:
        second, minute, hour, day, month, weekday = parts
    elif len(parts) == 5:
        second = "0"
        minute, hour, day, month, weekday = parts
    else:
        raise ValueError(
            f"Invalid cron schedule: '{schedule}'. "
            "Expected 5 or 6 parts (minute hour day month weekday "
            "or second minute hour day month weekday)"
        )

    return CronTrigger(
        second=second,
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=convert_day_of_week(weekday),
        timezone=timezone,
    )


def describe_schedule(schedule: str) -> str:
    """Human readable description for common cron expressions.

    Unknown expressions are returned prefixed with ``Cron:``.
    """
    normalized = " ".join(schedule.split())
    if normalized in _KNOWN_SCHEDULES:
        return _KNOWN_SCHEDULES[normalized]

    parts = normalized.split(" ")
    if len(parts) == 5:
        minute, hour, day, month, weekday = parts
        rest_is_wild = (day, month, weekday) == ("*", "*", "*")

        if minute.startswith("*/") and hour == "*" and rest_is_wild:
            return f"Every {minute[2:]} minutes"
        if minute == "0" and hour.startswith("*/") and rest_is_wild:
            return f"Every {hour[2:]} hours"
        if minute.isdigit() and hour.isdigit() and rest_is_wild:
            return f"Daily at {int(hour):02d}:{int(minute):02d}"

    return f"Cron: {normalized}"
