"""
Merchant operating hours in Singapore time.

Hours are stored per weekday: {"monday": {"isOpen": true, "slots": [{"open": "09:00", "close": "21:00"}]}, ...}.
No hours at all, or malformed slot times, mean the merchant is open. Once any
hours are set, a weekday that is not listed or has isOpen false is closed.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)

SINGAPORE_TZ = timezone(timedelta(hours=8))
DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def _minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


def _day(hours: dict[str, Any], when: datetime) -> Optional[dict]:
    schedule = hours.get(DAYS[when.weekday()])
    return schedule if isinstance(schedule, dict) else None


def _slots(schedule: dict) -> list[tuple[int, int]]:
    return [(_minutes(s["open"]), _minutes(s["close"])) for s in schedule.get("slots") or []]


def _in_slot(now_min: int, open_min: int, close_min: int) -> bool:
    if close_min < open_min:  # overnight, e.g. 22:00 - 02:00
        return now_min >= open_min or now_min < close_min
    return open_min <= now_min < close_min


def is_open(hours: Optional[dict[str, Any]], now: Optional[datetime] = None) -> bool:
    if not hours:
        return True
    local = (now or datetime.now(timezone.utc)).astimezone(SINGAPORE_TZ)
    try:
        schedule = _day(hours, local)
        if schedule is None or not schedule.get("isOpen"):
            return False
        slots = _slots(schedule)
    except (KeyError, ValueError, TypeError, AttributeError) as e:
        logger.warning("Malformed operating hours, treating as open: %s", e)
        return True
    if not slots:
        return True  # open all day
    now_min = local.hour * 60 + local.minute
    return any(_in_slot(now_min, o, c) for o, c in slots)


def next_opening_time(hours: Optional[dict[str, Any]], now: Optional[datetime] = None) -> Optional[datetime]:
    """Next slot opening within 7 days, in Singapore time, or None."""
    if not hours:
        return None
    local = (now or datetime.now(timezone.utc)).astimezone(SINGAPORE_TZ)
    try:
        for days_ahead in range(7):
            day = local + timedelta(days=days_ahead)
            schedule = _day(hours, day)
            if schedule is None or not schedule.get("isOpen"):
                continue
            for open_min, _close in sorted(_slots(schedule)):
                opening = day.replace(hour=open_min // 60, minute=open_min % 60, second=0, microsecond=0)
                if opening > local:
                    return opening
    except (KeyError, ValueError, TypeError, AttributeError) as e:
        logger.warning("Malformed operating hours: %s", e)
    return None
