"""Tests for trigger parsing, validation and evaluation."""

from datetime import datetime, timedelta, timezone

import pytest

from fplsync.jobs.errors import InvalidTrigger
from fplsync.jobs.triggers import (
    After,
    Cron,
    Every,
    next_fire_time,
    parse_trigger,
    validate_trigger,
)

# Thursday
T0 = datetime(2025, 10, 2, 10, 15, tzinfo=timezone.utc)


class TestParseTrigger:
    def test_every_hours(self):
        assert parse_trigger("every 2 hours") == Every(7200)

    def test_every_without_amount(self):
        assert parse_trigger("every hour") == Every(3600)

    def test_after_minutes(self):
        assert parse_trigger("after 10 minutes") == After(600)

    def test_case_and_whitespace_insensitive(self):
        assert parse_trigger("  Every   30 Minutes ") == Every(1800)

    def test_cron_expression(self):
        assert parse_trigger("0 */2 * * *") == Cron("0 */2 * * *")

    def test_unknown_relative_unit(self):
        with pytest.raises(InvalidTrigger):
            parse_trigger("every 2 fortnights")

    def test_empty(self):
        with pytest.raises(InvalidTrigger):
            parse_trigger("   ")


class TestValidateTrigger:
    @pytest.mark.parametrize("expression", [
        "0 6,18 * * *",
        "30 7,19 * * *",
        "0 9 * * 5,6",
        "0 * * * 6,0",
        "0 */4 * * *",
        "0 3 * * 1-5",
        "0 9 * * 0-3/2",
        "0 9 * * */2",
    ])
    def test_valid_cron(self, expression):
        assert validate_trigger(expression) == Cron(expression)

    @pytest.mark.parametrize("expression", [
        "0 6 * *",           # too few fields
        "0 6 * * * *",       # too many fields
        "61 * * * *",        # minute out of range
        "0 25 * * *",        # hour out of range
        "0 6 * * 8",         # day of week out of range
        "0 6 * * */0",       # zero step
        "0 6 * * 5-2/2",     # inverted stepped range
        "banana",
    ])
    def test_malformed_cron(self, expression):
        with pytest.raises(InvalidTrigger):
            validate_trigger(expression)

    def test_unknown_timezone(self):
        with pytest.raises(InvalidTrigger):
            validate_trigger("0 6 * * *", timezone="Mars/Olympus_Mons")

    def test_non_positive_interval(self):
        with pytest.raises(InvalidTrigger):
            validate_trigger(Every(0))

    def test_non_positive_delay(self):
        with pytest.raises(InvalidTrigger):
            validate_trigger(After(-1))

    def test_invalid_trigger_is_a_value_error(self):
        with pytest.raises(ValueError):
            validate_trigger("not a cron")


class TestNextFireTime:
    def test_twice_daily(self):
        assert next_fire_time(Cron("0 6,18 * * *"), now=T0) == datetime(2025, 10, 2, 18, 0, tzinfo=timezone.utc)

    def test_crontab_day_numbers_follow_sunday_zero(self):
        # 5,6 = Friday and Saturday in crontab numbering
        fire = next_fire_time(Cron("0 9 * * 5,6"), now=T0)
        assert fire == datetime(2025, 10, 3, 9, 0, tzinfo=timezone.utc)
        assert fire.strftime("%A") == "Friday"

    def test_weekend_hourly_starts_saturday(self):
        fire = next_fire_time(Cron("0 * * * 6,0"), now=T0)
        assert fire == datetime(2025, 10, 4, 0, 0, tzinfo=timezone.utc)
        assert fire.strftime("%A") == "Saturday"

    def test_sunday_as_seven(self):
        fire = next_fire_time(Cron("0 12 * * 7"), now=T0)
        assert fire.strftime("%A") == "Sunday"

    def test_range_starting_on_sunday(self):
        # Saturday 10:15 -> next 0-2 (Sun-Tue) slot is Sunday
        saturday = datetime(2025, 10, 4, 10, 15, tzinfo=timezone.utc)
        fire = next_fire_time(Cron("0 8 * * 0-2"), now=saturday)
        assert fire == datetime(2025, 10, 5, 8, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize("expression, days", [
        ("0 9 * * */2", {"Sunday", "Tuesday", "Thursday", "Saturday"}),
        ("0 9 * * 0-3/2", {"Sunday", "Tuesday"}),
        ("0 9 * * 1-5/2", {"Monday", "Wednesday", "Friday"}),
        ("0 9 * * 1,*/3", {"Sunday", "Monday", "Wednesday", "Saturday"}),
    ])
    def test_stepped_day_of_week_counts_from_sunday(self, expression, days):
        assert _weekdays_fired(Cron(expression), datetime(2025, 10, 1, 10, 0, tzinfo=timezone.utc)) == days

    def test_next_stepped_fire_after_wednesday(self):
        wednesday = datetime(2025, 10, 1, 10, 0, tzinfo=timezone.utc)
        fire = next_fire_time(Cron("0 9 * * */2"), now=wednesday)
        assert fire == datetime(2025, 10, 2, 9, 0, tzinfo=timezone.utc)

    def test_every_two_hours(self):
        assert next_fire_time(Every(7200), now=T0) == T0 + timedelta(hours=2)

    def test_after_delay(self):
        assert next_fire_time(After(600), now=T0) == T0 + timedelta(minutes=10)

    def test_cron_in_local_timezone(self):
        fire = next_fire_time(Cron("0 6 * * *"), timezone="Europe/London", now=T0)
        # 06:00 BST == 05:00 UTC on the following day
        assert fire.astimezone(timezone.utc) == datetime(2025, 10, 3, 5, 0, tzinfo=timezone.utc)

    def test_describe(self):
        assert Every(7200).describe() == "every 2 hours"
        assert After(90).describe() == "after 90s"
        assert Cron("0 6 * * *").describe() == "cron '0 6 * * *'"


def _weekdays_fired(trigger, start, fires=8):
    names = set()
    now = start
    for _ in range(fires):
        now = next_fire_time(trigger, now=now)
        names.add(now.strftime("%A"))
        now += timedelta(minutes=1)
    return names
