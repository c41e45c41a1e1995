"""
Time helpers for daily tripsheet entries
"""
import calendar
import re
from datetime import date
from typing import List

# Client billing counts hours beyond 10 per day, driver pay beyond 12.
# The two thresholds are separate business rules and must not be derived from each other.
BILLING_BASE_HOURS_PER_DAY = 10
DRIVER_BASE_HOURS_PER_DAY = 12

_TIME_PATTERN = re.compile(r'^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$')

DAY_NAMES = ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday']


def is_valid_time(value) -> bool:
    """Validate HH:mm time format"""
    if not isinstance(value, str):
        return False
    return bool(_TIME_PATTERN.match(value.strip()))


def format_time(value: str) -> str:
    hours, _, minutes = value.strip().partition(':')
    return f"{hours.strip().zfill(2)}:{(minutes.strip() or '00').zfill(2)}"


def _minutes(value: str) -> int:
    hours, minutes = value.split(':')
    return int(hours) * 60 + int(minutes)


def calculate_total_hours(starting_time: str, closing_time: str) -> float:
    """
    Hours between two HH:mm times, rounded to one decimal.
    A closing time earlier than the starting time is taken to be on the next day.
    """
    start = _minutes(starting_time)
    end = _minutes(closing_time)
    if end < start:
        end += 24 * 60
    return round((end - start) / 60, 1)


def calculate_extra_hours(total_hours: float, base_hours: float = BILLING_BASE_HOURS_PER_DAY) -> float:
    """Billing-side overage above the daily base hours (minimum 0)"""
    return max(0.0, round(total_hours - base_hours, 1))


def calculate_driver_extra_hours(total_hours: float) -> float:
    """Salary-side overage above 12 hours (minimum 0)"""
    return max(0.0, round(total_hours - DRIVER_BASE_HOURS_PER_DAY, 1))


def get_day_type(entry_date: date) -> str:
    weekday = entry_date.weekday()
    if weekday == 6:
        return 'sunday'
    if weekday == 5:
        return 'saturday'
    return 'working'


def get_day_name(entry_date: date) -> str:
    return DAY_NAMES[entry_date.weekday()]


def days_in_month(month: int, year: int) -> int:
    return calendar.monthrange(year, month)[1]


def month_dates(month: int, year: int) -> List[date]:
    """Every calendar date of the given month, in order"""
    return [date(year, month, day) for day in range(1, days_in_month(month, year) + 1)]
