# tenant_billing/services/proration.py
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from .money import ZERO, quantize_cent, to_decimal
from .occupancy import days_in_month as _days_in_month, occupied_days as _occupied_days


@dataclass(frozen=True)
class RentProration:
    monthly_rent: Decimal
    occupied_days: int
    days_in_month: int
    is_full_month: bool
    daily_rate: Decimal
    billable_amount: Decimal
    occupancy_percentage: int

    @property
    def is_prorated(self):
        return not self.is_full_month

    def to_dict(self):
        return {
            'monthly_rent': str(self.monthly_rent),
            'occupied_days': self.occupied_days,
            'days_in_month': self.days_in_month,
            'is_full_month': self.is_full_month,
            'daily_rate': str(self.daily_rate),
            'billable_amount': str(self.billable_amount),
            'occupancy_percentage': self.occupancy_percentage,
        }


def prorate(monthly_rent, occupied_days: int, days_in_month: int) -> RentProration:
    """
    Scale a monthly rent to the days actually occupied.

    A full month bills the rent untouched. A partial month bills
    ``monthly_rent / days_in_month * occupied_days`` rounded half-up to cents;
    the daily rate itself is never rounded.
    """
    rent = to_decimal(monthly_rent)
    if rent < 0:
        raise ValueError("monthly_rent must not be negative")
    if days_in_month <= 0:
        raise ValueError("days_in_month must be positive")
    if not 0 <= occupied_days <= days_in_month:
        raise ValueError(f"occupied_days must be within 0..{days_in_month}, got {occupied_days}")

    daily_rate = rent / days_in_month
    percentage = int((Decimal(100 * occupied_days) / days_in_month).quantize(Decimal(1), rounding=ROUND_HALF_UP))

    if occupied_days == days_in_month:
        billable = rent
    elif occupied_days == 0:
        billable = ZERO
    else:
        billable = quantize_cent(daily_rate * occupied_days)

    return RentProration(
        monthly_rent=rent,
        occupied_days=occupied_days,
        days_in_month=days_in_month,
        is_full_month=occupied_days == days_in_month,
        daily_rate=daily_rate,
        billable_amount=billable,
        occupancy_percentage=percentage,
    )


def prorate_for_month(monthly_rent, move_in: date, move_out: Optional[date], year: int, month: int) -> RentProration:
    return prorate(
        monthly_rent,
        _occupied_days(move_in, move_out, year, month),
        _days_in_month(year, month),
    )
