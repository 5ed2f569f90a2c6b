"""
Cron schedule evaluation for backup targets.

Expressions use the seconds-first layout ``sec min hour day month day_of_week``
with an optional trailing ``year`` field. Classic five-field crontab
expressions are accepted as well (seconds fixed at 0).
"""

from datetime import datetime, timedelta
from typing import Optional, Union

from apscheduler.triggers.cron import CronTrigger


class InvalidScheduleError(Exception):
    """Raised when a cron expression cannot be parsed."""
    pass


def parse_schedule(expr: str, timezone='UTC') -> CronTrigger:
    """
    Build an APScheduler CronTrigger from a cron expression.

    Args:
        expr: Cron expression with 5, 6 or 7 fields
        timezone: Time zone the expression is evaluated in

    Returns:
        CronTrigger instance

    Raises:
        InvalidScheduleError: If the expression is empty or malformed
    """
    if not expr or not expr.strip():
        raise InvalidScheduleError("Empty cron expression")

    # '?' means "no specific value" in Quartz-style expressions
    fields = ['*' if value == '?' else value for value in expr.lower().split()]

    try:
        if len(fields) == 5:
            return CronTrigger.from_crontab(' '.join(fields), timezone=timezone)

        if len(fields) in (6, 7):
            second, minute, hour, day, month, day_of_week = fields[:6]
            year = fields[6] if len(fields) == 7 else None
            return CronTrigger(
                year=year,
                month=month,
                day=day,
                day_of_week=day_of_week,
                hour=hour,
                minute=minute,
                second=second,
                timezone=timezone
            )
    except (ValueError, TypeError) as e:
        raise InvalidScheduleError(f"Invalid cron expression '{expr}': {e}")

    raise InvalidScheduleError(
        f"Invalid cron expression '{expr}': expected 5, 6 or 7 fields, got {len(fields)}"
    )


def _as_aware(value: datetime, trigger: CronTrigger) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=trigger.timezone)
    return value


def next_firing(schedule: Union[str, CronTrigger], window_start: datetime, now: datetime,
                timezone='UTC') -> Optional[datetime]:
    """
    Find the latest firing of a schedule inside ``[window_start, now]``.

    Args:
        schedule: Cron expression or an already parsed trigger
        window_start: Inclusive start of the lookback window
        now: Inclusive end of the window
        timezone: Time zone used when ``schedule`` is an expression

    Returns:
        The most recent firing instant in the window, or None

    Raises:
        InvalidScheduleError: If the expression cannot be parsed
    """
    trigger = schedule if isinstance(schedule, CronTrigger) else parse_schedule(schedule, timezone)
    window_start = _as_aware(window_start, trigger)
    now = _as_aware(now, trigger)

    latest = None
    fire_time = trigger.get_next_fire_time(None, window_start)

    while fire_time is not None and fire_time <= now:
        latest = fire_time
        # Passing the firing as previous fire time moves strictly past it
        fire_time = trigger.get_next_fire_time(fire_time, fire_time)

    return latest


def due_instant(schedule: Union[str, CronTrigger], now: datetime, lookback_seconds: int,
                timezone='UTC') -> Optional[datetime]:
    """
    Return the due instant of a schedule at ``now`` using a lookback window.

    Args:
        schedule: Cron expression or parsed trigger
        now: Current time
        lookback_seconds: Width of the search window
        timezone: Time zone used when ``schedule`` is an expression

    Returns:
        Most recent firing within the last ``lookback_seconds``, or None
    """
    return next_firing(schedule, now - timedelta(seconds=lookback_seconds), now, timezone)


def upcoming_firing(schedule: str, now: datetime, timezone='UTC') -> Optional[datetime]:
    """Return the first firing at or after ``now``."""
    trigger = parse_schedule(schedule, timezone)
    return trigger.get_next_fire_time(None, _as_aware(now, trigger))


def validate_schedule(expr: str) -> bool:
    """Check whether a cron expression can be parsed."""
    try:
        parse_schedule(expr)
        return True
    except InvalidScheduleError:
        return False


def schedule_preset(preset: str, hour: int = 0, day: Optional[Union[int, str]] = None) -> str:
    """
    Build a cron expression for one of the common schedule presets.

    Args:
        preset: 'minutely', 'hourly', 'daily', 'weekly' or 'monthly'
        hour: Hour of day (0-23) for daily, weekly and monthly presets
        day: Weekday name (weekly, default 'sun') or day of month (monthly, default 1)

    Returns:
        Six-field cron expression

    Raises:
        ValueError: If the preset or its parameters are invalid
    """
    if not 0 <= hour <= 23:
        raise ValueError("Hour must be between 0 and 23")

    if preset == 'minutely':
        return '0 * * * * *'
    if preset == 'hourly':
        return '0 0 * * * *'
    if preset == 'daily':
        return f'0 0 {hour} * * *'
    if preset == 'weekly':
        weekday = str(day or 'sun').lower()[:3]
        if weekday not in ('mon', 'tue', 'wed', 'thu', 'fri', 'sat', 'sun'):
            raise ValueError(f"Invalid weekday: {day}")
        return f'0 0 {hour} * * {weekday}'
    if preset == 'monthly':
        date = int(day or 1)
        if not 1 <= date <= 31:
            raise ValueError("Date must be between 1 and 31")
        return f'0 0 {hour} {date} * *'

    raise ValueError(f"Unknown schedule preset: {preset}")
