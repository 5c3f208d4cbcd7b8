# tenant_billing/services/occupancy.py
"""
Calendar and occupancy arithmetic.

Every day count in the package (rent proration, allocation weighting,
occupancy statistics, KPI aggregates) goes through ``occupied_days``.
"""
from calendar import monthrange
from datetime import date
from typing import Optional, Tuple

from ..errors import InvalidPeriodError, InvariantViolationError

MIN_YEAR = 1000
MAX_YEAR = 9999


def validate_period(month, year):
    """Raise InvalidPeriodError unless month is 1-12 and year has four digits."""
    if isinstance(month, bool) or not isinstance(month, int):
        raise InvalidPeriodError(f"Month must be an integer, got {month!r}", month=month)
    if isinstance(year, bool) or not isinstance(year, int):
        raise InvalidPeriodError(f"Year must be an integer, got {year!r}", year=year)
    if not 1 <= month <= 12:
        raise InvalidPeriodError("Month must be between 1 and 12", month=month)
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise InvalidPeriodError("Year must be a four-digit year", year=year)


def days_in_month(year: int, month: int) -> int:
    validate_period(month, year)
    return monthrange(year, month)[1]


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    last_day = days_in_month(year, month)
    return date(year, month, 1), date(year, month, last_day)


def previous_period(month: int, year: int) -> Tuple[int, int]:
    """The (month, year) one calendar month earlier, rolling back across January."""
    validate_period(month, year)
    if month == 1:
        return 12, year - 1
    return month - 1, year


def next_period(month: int, year: int) -> Tuple[int, int]:
    """The (month, year) one calendar month later, rolling over after December."""
    validate_period(month, year)
    if month == 12:
        return 1, year + 1
    return month + 1, year


def occupancy_window(move_in: date, move_out: Optional[date], year: int, month: int
                     ) -> Optional[Tuple[date, date]]:
    """
    First and last occupied day of the tenancy inside the month, or None.

    ``move_out`` is the last occupied day (inclusive); None means the tenancy
    runs on indefinitely.
    """
    month_start, month_end = month_bounds(year, month)
    start = max(move_in, month_start)
    end = min(move_out, month_end) if move_out is not None else month_end
    if end < start:
        return None
    return start, end


def occupied_days(move_in: date, move_out: Optional[date], year: int, month: int) -> int:
    """Inclusive count of days in the month covered by [move_in, move_out]."""
    window = occupancy_window(move_in, move_out, year, month)
    if window is None:
        return 0
    start, end = window
    return (end - start).days + 1


def overlaps_month(move_in: date, move_out: Optional[date], year: int, month: int) -> bool:
    return occupied_days(move_in, move_out, year, month) > 0


def check_interval(move_in: Optional[date], move_out: Optional[date], tenancy_id=None):
    """Raise on stored occupancy data that can never be valid; never repair it."""
    if move_in is None:
        raise InvariantViolationError(f"Tenancy {tenancy_id} has no move-in date", tenancy_id=tenancy_id)
    if move_out is not None and move_out < move_in:
        raise InvariantViolationError(
            f"Tenancy {tenancy_id} moves out ({move_out}) before it moves in ({move_in})",
            tenancy_id=tenancy_id,
        )
