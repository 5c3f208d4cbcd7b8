# tenant_billing/services/allocation.py
"""
Splitting one utility charge across the tenancies of a property.

``allocate`` is pure: it takes plain snapshots and returns shares. Storing
the shares (and clearing the old ones) is the job of ``services.utilities``.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

from ..errors import AllocationError
from .money import ZERO, quantize_cent, to_decimal
from .occupancy import days_in_month, occupied_days
from .types import TenancySnapshot

PER_OCCUPANT = 'per_occupant'
PER_OCCUPANT_WEIGHTED = 'per_occupant_weighted'
PER_AREA = 'per_area'

METHODS = (PER_OCCUPANT, PER_OCCUPANT_WEIGHTED, PER_AREA)


@dataclass(frozen=True)
class AllocationShare:
    tenancy_id: int
    allocated_amount: Decimal
    occupied_days: Optional[int] = None
    days_in_month: Optional[int] = None
    prorated: bool = False

    def to_dict(self):
        return {
            'tenancy_id': self.tenancy_id,
            'allocated_amount': str(self.allocated_amount),
            'occupied_days': self.occupied_days,
            'days_in_month': self.days_in_month,
            'prorated': self.prorated,
        }


def _area_weights(tenancies: Sequence[TenancySnapshot], total_area) -> List[Decimal]:
    declared = [t.room_area for t in tenancies if t.room_area is not None]
    missing = len(tenancies) - len(declared)
    if any(to_decimal(a) < 0 for a in declared):
        raise AllocationError("room_area must not be negative")
    fallback = None
    if missing:
        # Tenancies without a declared room share what is left of the property area
        if total_area is None:
            raise AllocationError(
                f"{missing} tenancies have no room_area and the property has no total_area"
            )
        remaining = to_decimal(total_area) - sum((to_decimal(a) for a in declared), Decimal(0))
        if remaining <= 0:
            raise AllocationError("declared room areas leave no property area for the remaining tenancies")
        fallback = remaining / missing
    return [to_decimal(t.room_area) if t.room_area is not None else fallback for t in tenancies]


def _weights(method, tenancies, total_area) -> List[Decimal]:
    if method == PER_OCCUPANT:
        return [Decimal(1)] * len(tenancies)
    if method == PER_OCCUPANT_WEIGHTED:
        if any((t.number_of_occupants or 0) < 0 for t in tenancies):
            raise AllocationError("number_of_occupants must not be negative")
        return [Decimal(t.number_of_occupants or 0) for t in tenancies]
    if method == PER_AREA:
        return _area_weights(tenancies, total_area)
    raise AllocationError(f"Unknown allocation method: {method}", method=method)


def _apportion(total: Decimal, weights: Sequence[Decimal]) -> List[Decimal]:
    denominator = sum(weights, Decimal(0))
    if denominator <= 0:
        raise AllocationError("Allocation denominator is zero; nothing to split the charge by")
    shares = [quantize_cent(total * w / denominator) for w in weights]
    drift = total - sum(shares, ZERO)
    if drift:
        # Drift goes to the last share unless that would push it below zero
        target = len(shares) - 1
        if shares[target] + drift < 0:
            target = max(range(len(shares)), key=lambda i: shares[i])
        shares[target] += drift
    return shares


def allocate(total_amount, method: str, tenancies: Iterable[TenancySnapshot], *,
             total_area=None, period: Optional[Tuple[int, int]] = None,
             occupancy_weighted: bool = False) -> List[AllocationShare]:
    """
    Split ``total_amount`` across ``tenancies`` by ``method``.

    Shares are rounded half-up to cents in tenancy-id order and any rounding
    drift is put on the last share, so they always sum to ``total_amount``.
    An empty roster yields no shares. ``period`` is the charge's
    ``(month, year)``; when given, the occupied days of each tenancy in that
    month are recorded on the shares, and with ``occupancy_weighted`` they
    scale each tenancy's weight by its occupied fraction of the month. Only
    a share scaled that way is flagged ``prorated``.
    """
    total = quantize_cent(total_amount)
    if total < 0:
        raise AllocationError("total_amount must not be negative", total_amount=str(total))
    if method not in METHODS:
        raise AllocationError(f"Unknown allocation method: {method}", method=method)
    if occupancy_weighted and period is None:
        raise AllocationError("occupancy weighting needs the charge period")

    roster = sorted(tenancies, key=lambda t: t.id)
    if not roster:
        return []

    weights = _weights(method, roster, total_area)

    days = None
    occupied = [None] * len(roster)
    if period is not None:
        month, year = period
        days = days_in_month(year, month)
        occupied = [occupied_days(t.move_in_date, t.move_out_date, year, month) for t in roster]
        if occupancy_weighted:
            weights = [w * Decimal(o) / Decimal(days) for w, o in zip(weights, occupied)]

    amounts = _apportion(total, weights)
    return [
        AllocationShare(tenancy_id=t.id, allocated_amount=amount,
                        occupied_days=o, days_in_month=days,
                        prorated=occupancy_weighted and o < days)
        for t, amount, o in zip(roster, amounts, occupied)
    ]
