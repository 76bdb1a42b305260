"""Date manipulation utilities"""

import calendar
from datetime import date, datetime


def add_months(from_date: date, months: int) -> date:
    """Add calendar months to a date, clamping to the last day of the target month"""
    month_index = from_date.month - 1 + months
    year = from_date.year + month_index // 12
    month = month_index % 12 + 1
    day = min(from_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def parse_iso_date(value: date | str) -> date:
    """Accept a date or an ISO YYYY-MM-DD string; raises ValueError on invalid calendar dates"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise ValueError(f"Expected a date or ISO date string, got {type(value).__name__}")
