from datetime import datetime
import pytz

IST = pytz.timezone('Asia/Kolkata')


def get_ist_time():
    """Get current time in IST timezone"""
    return datetime.now(IST)


def get_ist_time_naive():
    """Get current IST time as naive datetime for database storage"""
    return get_ist_time().replace(tzinfo=None)


def current_month_year():
    now = get_ist_time()
    return now.month, now.year
