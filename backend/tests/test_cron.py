from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from geoindex.core.errors import TaskValidationError
from geoindex.scheduling.cron import build_cron_trigger, cron_fields


def test_crontab_weekdays_are_named():
    assert cron_fields("0 2 * * 1")["day_of_week"] == "mon"
    assert cron_fields("0 2 * * 0,7")["day_of_week"] == "sun"
    assert cron_fields("0 2 * * 1-5")["day_of_week"] == "mon,tue,wed,thu,fri"
    assert cron_fields("0 2 * * */2")["day_of_week"] == "sun,tue,thu,sat"
    assert cron_fields("0 2 * * mon-wed")["day_of_week"] == "mon,tue,wed"
    assert cron_fields("*/15 * * * *") == {
        "minute": "*/15",
        "hour": "*",
        "day": "*",
        "month": "*",
        "day_of_week": "*",
    }


@pytest.mark.parametrize(
    "expression, weekdays",
    [
        ("0 0 * * 0-6", "sun,mon,tue,wed,thu,fri,sat"),
        ("0 0 * * 0-4", "sun,mon,tue,wed,thu"),
        ("0 0 * * 1-7", "mon,tue,wed,thu,fri,sat,sun"),
        ("0 0 0 ? * 1-7", "sun,mon,tue,wed,thu,fri,sat"),
        ("0 0 0 ? * 1-5", "sun,mon,tue,wed,thu"),
        ("0 0 0 ? * MON-FRI", "mon,tue,wed,thu,fri"),
    ],
)
def test_weekday_ranges_starting_on_sunday(expression, weekdays):
    assert cron_fields(expression)["day_of_week"] == weekdays
    build_cron_trigger(expression, timezone="UTC")


def test_sunday_range_fires_on_sunday():
    trigger = build_cron_trigger("0 0 * * 0-4", timezone="UTC")
    saturday = datetime(2030, 1, 5, 12, 0, tzinfo=timezone.utc)
    nxt = trigger.get_next_fire_time(None, saturday)
    assert (nxt.year, nxt.month, nxt.day, nxt.hour) == (2030, 1, 6, 0)
    assert nxt.weekday() == 6


def test_descending_weekday_range_is_rejected():
    with pytest.raises(TaskValidationError):
        cron_fields("0 0 * * 5-1")


def test_quartz_expression():
    fields = cron_fields("0 0 2 ? * 1")
    assert fields == {
        "second": "0",
        "minute": "0",
        "hour": "2",
        "day": "*",
        "month": "*",
        "day_of_week": "sun",
    }
    assert cron_fields("0 0 0/4 * * ? 2030")["year"] == "2030"
    assert cron_fields("0 30 1 L * ?")["day"] == "last"


def test_wrong_number_of_fields():
    with pytest.raises(TaskValidationError):
        cron_fields("* * *")
    with pytest.raises(TaskValidationError):
        cron_fields("")


def test_invalid_values_raise_validation_error():
    with pytest.raises(TaskValidationError):
        build_cron_trigger("61 * * * *")
    with pytest.raises(TaskValidationError):
        build_cron_trigger("0 0 2 ? * 9")


def test_start_delay():
    before = datetime.now(timezone.utc)
    trigger = build_cron_trigger("* * * * *", start_delay_seconds=90, timezone="UTC")
    first = trigger.get_next_fire_time(None, before)
    assert first >= before + timedelta(seconds=89)


def test_next_fire_time_matches_expression():
    trigger = build_cron_trigger("0 0 3 * * ?", timezone="UTC")
    now = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
    nxt = trigger.get_next_fire_time(None, now)
    assert (nxt.day, nxt.hour, nxt.minute, nxt.second) == (2, 3, 0, 0)
