"""Cron expressions to APScheduler triggers.

Both the 5-field crontab form (``min hour dom month dow``) and the Quartz form
used by existing schedules (``sec min hour dom month dow [year]``) are accepted.
Day-of-week fields are expanded into weekday names because APScheduler counts
from Monday: crontab uses 0/7 for Sunday, Quartz uses 1 for Sunday.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Optional

from apscheduler.triggers.cron import CronTrigger

from geoindex.core.config import settings
from geoindex.core.errors import TaskValidationError

_WEEKDAYS = ["sun", "mon", "tue", "wed", "thu", "fri", "sat"]

_DOW_PART = re.compile(r"^(\*|\w+)(?:-(\w+))?(?:/(\d+))?$")


def _weekday_number(token: str, *, quartz: bool) -> int:
    """Position of a weekday in the expression's own numbering."""

    first = 1 if quartz else 0
    last = 7
    if token.isdigit():
        n = int(token)
        if not first <= n <= last:
            raise TaskValidationError(f"invalid day of week: {token}")
        return n
    name = token[:3].lower()
    if name not in _WEEKDAYS:
        raise TaskValidationError(f"invalid day of week: {token}")
    return _WEEKDAYS.index(name) + first


def _weekday_name(n: int, *, quartz: bool) -> str:
    return _WEEKDAYS[(n - 1) % 7] if quartz else _WEEKDAYS[n % 7]


def _convert_day_of_week(field: str, *, quartz: bool) -> str:
    """Expand a day-of-week field into a list of weekday names.

    Ranges and steps are resolved here: a range starting on Sunday has no
    equivalent in APScheduler's Monday-first numbering.
    """

    if field.strip() == "*":
        return "*"

    names: list[str] = []
    for part in field.split(","):
        m = _DOW_PART.match(part.strip())
        if m is None:
            raise TaskValidationError(f"invalid day of week: {part}")
        start_token, end_token, step = m.groups()
        if start_token == "*":
            if end_token:
                raise TaskValidationError(f"invalid day of week: {part}")
            start, end = (1, 7) if quartz else (0, 6)
        else:
            start = _weekday_number(start_token, quartz=quartz)
            if end_token:
                end = _weekday_number(end_token, quartz=quartz)
            elif step:
                end = 7 if quartz else 6
            else:
                end = start
        if end < start:
            raise TaskValidationError(f"invalid day of week range: {part}")
        step_n = int(step) if step else 1
        if step_n < 1:
            raise TaskValidationError(f"invalid day of week step: {part}")
        for n in range(start, end + 1, step_n):
            name = _weekday_name(n, quartz=quartz)
            if name not in names:
                names.append(name)
    return ",".join(names)


def _quartz_field(value: str) -> str:
    v = value.strip()
    if v == "?":
        return "*"
    if v.upper() == "L":
        return "last"
    return v


def cron_fields(expression: str) -> dict[str, str]:
    """Split a cron expression into CronTrigger keyword arguments."""

    if not expression or not expression.strip():
        raise TaskValidationError("cron expression is required")

    fields = expression.split()
    if len(fields) == 5:
        minute, hour, day, month, dow = fields
        return {
            "minute": minute,
            "hour": hour,
            "day": day,
            "month": month,
            "day_of_week": _convert_day_of_week(dow, quartz=False),
        }

    if len(fields) in (6, 7):
        second, minute, hour, day, month, dow = [_quartz_field(f) for f in fields[:6]]
        out = {
            "second": second,
            "minute": minute,
            "hour": hour,
            "day": day,
            "month": month,
            "day_of_week": _convert_day_of_week(dow, quartz=True),
        }
        if len(fields) == 7:
            out["year"] = _quartz_field(fields[6])
        return out

    raise TaskValidationError(
        f"invalid cron expression {expression!r}: expected 5, 6 or 7 fields, got {len(fields)}"
    )


def build_cron_trigger(
    expression: str,
    *,
    start_delay_seconds: int = 0,
    timezone: Optional[str] = None,
) -> CronTrigger:
    """A CronTrigger that fires no earlier than `start_delay_seconds` from now."""

    kwargs = cron_fields(expression)
    start_date: Optional[datetime] = None
    if start_delay_seconds > 0:
        start_date = datetime.now(dt_timezone.utc) + timedelta(seconds=start_delay_seconds)
    try:
        return CronTrigger(
            start_date=start_date,
            timezone=timezone or settings.scheduler_timezone,
            **kwargs,
        )
    except ValueError as e:
        raise TaskValidationError(f"invalid cron expression {expression!r}: {e}") from e
