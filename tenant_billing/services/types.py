from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional


@dataclass(frozen=True)
class TenancySnapshot:
    """Immutable view of a tenancy row, safe to hand to worker threads."""
    id: int
    property_id: int
    monthly_rent: Decimal
    move_in_date: date
    move_out_date: Optional[date] = None
    room_area: Optional[Decimal] = None
    number_of_occupants: int = 1


@dataclass(frozen=True)
class UtilityLine:
    """One allocated share of a utility charge, as it appears on a statement."""
    charge_id: int
    category: str
    period_month: int
    period_year: int
    allocated_amount: Decimal
    prorated: bool = False

    def to_dict(self):
        return {
            'charge_id': self.charge_id,
            'category': self.category,
            'period_month': self.period_month,
            'period_year': self.period_year,
            'allocated_amount': str(self.allocated_amount),
            'prorated': self.prorated,
        }
