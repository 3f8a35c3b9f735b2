from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

from metrichub.engine.errors import ValidationError
from metrichub.engine.events import TimeRange


def last_days(days: int, now: datetime) -> TimeRange:
    """The *days*-long window ending at *now*."""
    if days < 1:
        raise ValidationError("days must be at least 1.")
    return TimeRange(start=now - timedelta(days=days), end=now)


def this_month(now: datetime) -> TimeRange:
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start == now:
        # First instant of the month: fall back to the whole previous month.
        return last_month(now)
    return TimeRange(start=start, end=now)


def last_month(now: datetime) -> TimeRange:
    end = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    start = (end - timedelta(days=1)).replace(day=1)
    return TimeRange(start=start, end=end)


PRESETS: dict[str, Callable[[datetime], TimeRange]] = {
    "last-7-days": lambda now: last_days(7, now),
    "last-30-days": lambda now: last_days(30, now),
    "last-90-days": lambda now: last_days(90, now),
    "this-month": this_month,
    "last-month": last_month,
}


def resolve_preset(name: str, now: datetime) -> TimeRange:
    """Return the :class:`TimeRange` for the dashboard preset *name*.

    Raises:
        ValidationError: If *name* is not a known preset.
    """
    factory = PRESETS.get(name)
    if factory is None:
        raise ValidationError(
            f"Unknown time range {name!r}; expected one of: {', '.join(PRESETS)}."
        )
    return factory(now)
