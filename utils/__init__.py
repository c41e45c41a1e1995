# Utils package - shared helpers for entries, amounts and serial numbers
from utils.number_to_words import (
    number_to_indian_words,
    format_indian_currency,
    format_indian_number,
)
from utils.time_calculator import (
    BILLING_BASE_HOURS_PER_DAY,
    DRIVER_BASE_HOURS_PER_DAY,
    calculate_total_hours,
    calculate_extra_hours,
    calculate_driver_extra_hours,
    get_day_type,
    get_day_name,
    days_in_month,
    month_dates,
    is_valid_time,
    format_time,
)


def format_serial_number(prefix: str, year: int, sequence: int) -> str:
    """Serial numbers such as TS-2025-0001 or BILL-2025-0042"""
    return f"{prefix}-{year}-{sequence:04d}"
