import os
import sys
from datetime import datetime, timezone

_test_dir = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, _test_dir)

from marketplace.operating_hours import SINGAPORE_TZ, is_open, next_opening_time

# 2024-01-01 is a Monday
MONDAY_11AM_SGT = datetime(2024, 1, 1, 3, 0, tzinfo=timezone.utc)
MONDAY_10PM_SGT = datetime(2024, 1, 1, 14, 0, tzinfo=timezone.utc)

WEEKDAY_HOURS = {
    "monday": {"isOpen": True, "slots": [{"open": "09:00", "close": "21:00"}]},
    "tuesday": {"isOpen": True, "slots": [{"open": "09:00", "close": "21:00"}]},
}


def test_no_hours_means_open():
    assert is_open(None, MONDAY_11AM_SGT)
    assert is_open({}, MONDAY_11AM_SGT)
    assert next_opening_time(None, MONDAY_11AM_SGT) is None


def test_within_and_outside_slot():
    assert is_open(WEEKDAY_HOURS, MONDAY_11AM_SGT)
    assert not is_open(WEEKDAY_HOURS, MONDAY_10PM_SGT)


def test_day_not_listed_is_closed():
    sunday = datetime(2024, 1, 7, 3, 0, tzinfo=timezone.utc)
    assert not is_open(WEEKDAY_HOURS, sunday)


def test_open_day_without_slots_is_open_all_day():
    assert is_open({"monday": {"isOpen": True}}, MONDAY_10PM_SGT)


def test_overnight_slot():
    hours = {"monday": {"isOpen": True, "slots": [{"open": "18:00", "close": "02:00"}]}}
    assert is_open(hours, MONDAY_10PM_SGT)
    assert not is_open(hours, MONDAY_11AM_SGT)


def test_malformed_hours_treated_as_open():
    hours = {"monday": {"isOpen": True, "slots": [{"open": "9am", "close": "9pm"}]}}
    assert is_open(hours, MONDAY_11AM_SGT)


def test_next_opening_time():
    assert next_opening_time(WEEKDAY_HOURS, MONDAY_10PM_SGT) == datetime(2024, 1, 2, 9, 0, tzinfo=SINGAPORE_TZ)
    early = datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)  # 08:00 SGT
    assert next_opening_time(WEEKDAY_HOURS, early) == datetime(2024, 1, 1, 9, 0, tzinfo=SINGAPORE_TZ)
    assert next_opening_time({"monday": {"isOpen": False}}, MONDAY_11AM_SGT) is None
