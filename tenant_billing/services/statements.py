# tenant_billing/services/statements.py
"""
Monthly statement assembly: this month's rent plus last month's utilities.

A statement for (month, year) bills prorated rent for that month and the
utility allocations whose charge period is the month before. The one-month
lag is a billing rule ("this month's rent, last month's metered usage").
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from ..errors import PartialBatchFailure
from .money import ZERO, quantize_cent
from .occupancy import check_interval, previous_period, validate_period
from .proration import RentProration, prorate_for_month
from .types import TenancySnapshot, UtilityLine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Statement:
    tenancy_id: int
    property_id: int
    month: int
    year: int
    rent_line: RentProration
    utility_period: Tuple[int, int]
    utility_lines: Tuple[UtilityLine, ...]
    total_utilities: Decimal
    total_due: Decimal

    def to_dict(self):
        util_month, util_year = self.utility_period
        return {
            'tenancy_id': self.tenancy_id,
            'property_id': self.property_id,
            'month': self.month,
            'year': self.year,
            'rent_line': self.rent_line.to_dict(),
            'utility_period': {'month': util_month, 'year': util_year},
            'utility_lines': [line.to_dict() for line in self.utility_lines],
            'utilities_prorated': any(line.prorated for line in self.utility_lines),
            'total_utilities': str(self.total_utilities),
            'total_due': str(self.total_due),
        }


def build_statement(tenancy: TenancySnapshot, month: int, year: int,
                    utility_lines: Iterable[UtilityLine]) -> Optional[Statement]:
    """
    Statement for one tenancy, or None when it occupied no day of the month.

    Lines from any period other than the previous month are ignored.
    """
    validate_period(month, year)
    check_interval(tenancy.move_in_date, tenancy.move_out_date, tenancy.id)

    rent = prorate_for_month(tenancy.monthly_rent, tenancy.move_in_date, tenancy.move_out_date, year, month)
    if rent.occupied_days == 0:
        return None

    utility_period = previous_period(month, year)
    lines = tuple(
        line for line in utility_lines
        if (line.period_month, line.period_year) == utility_period
    )
    total_utilities = sum((line.allocated_amount for line in lines), ZERO)
    return Statement(
        tenancy_id=tenancy.id,
        property_id=tenancy.property_id,
        month=month,
        year=year,
        rent_line=rent,
        utility_period=utility_period,
        utility_lines=lines,
        total_utilities=quantize_cent(total_utilities),
        total_due=quantize_cent(rent.billable_amount + total_utilities),
    )


@dataclass
class BatchItemError:
    tenancy_id: int
    error_type: str
    message: str

    @classmethod
    def from_exception(cls, tenancy_id, exc):
        return cls(tenancy_id=tenancy_id, error_type=type(exc).__name__, message=str(exc))

    def to_dict(self):
        return {'tenancy_id': self.tenancy_id, 'error_type': self.error_type, 'message': self.message}


@dataclass
class BatchResult:
    month: int
    year: int
    statements: List[Statement] = field(default_factory=list)
    errors: List[BatchItemError] = field(default_factory=list)
    excluded: List[int] = field(default_factory=list)  # zero occupied days
    skipped: List[int] = field(default_factory=list)   # never started (batch cancelled)

    @property
    def attempted(self):
        return len(self.statements) + len(self.errors) + len(self.excluded)

    @property
    def has_failures(self):
        return bool(self.errors)

    @property
    def total_rent(self):
        return quantize_cent(sum((s.rent_line.billable_amount for s in self.statements), ZERO))

    @property
    def total_utilities(self):
        return quantize_cent(sum((s.total_utilities for s in self.statements), ZERO))

    @property
    def total_due(self):
        return quantize_cent(sum((s.total_due for s in self.statements), ZERO))

    def add_error(self, tenancy_id, exc):
        self.errors.append(BatchItemError.from_exception(tenancy_id, exc))

    def raise_for_failures(self):
        if self.errors:
            raise PartialBatchFailure(self)

    def to_dict(self):
        return {
            'month': self.month,
            'year': self.year,
            'statements': [s.to_dict() for s in self.statements],
            'errors': [e.to_dict() for e in self.errors],
            'excluded': list(self.excluded),
            'skipped': list(self.skipped),
            'totals': {
                'rent': str(self.total_rent),
                'utilities': str(self.total_utilities),
                'due': str(self.total_due),
            },
        }


def build_statements(tenancies: Sequence[TenancySnapshot], month: int, year: int,
                     lines_for: Callable[[int], Iterable[UtilityLine]], *,
                     max_workers: Optional[int] = None,
                     cancel_event: Optional[threading.Event] = None,
                     result: Optional[BatchResult] = None) -> BatchResult:
    """
    Build statements for many tenancies in parallel without aborting on failures.

    ``lines_for(tenancy_id)`` supplies the tenancy's utility lines. A failure
    in one tenancy (lookup or calculation) is recorded in ``errors`` and the
    rest of the batch carries on. Once ``cancel_event`` is set no new work is
    started; work already running finishes and the rest is listed as skipped.
    """
    validate_period(month, year)
    if result is None:
        result = BatchResult(month=month, year=year)

    def work(tenancy):
        return build_statement(tenancy, month, year, lines_for(tenancy.id))

    submitted = []
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        for tenancy in tenancies:
            if cancel_event is not None and cancel_event.is_set():
                result.skipped.append(tenancy.id)
                continue
            submitted.append((tenancy, pool.submit(work, tenancy)))

    # Collected in submission order so output is deterministic
    for tenancy, future in submitted:
        exc = future.exception()
        if exc is not None:
            logger.warning("Statement for tenancy %s (%02d/%d) failed: %s", tenancy.id, month, year, exc)
            result.add_error(tenancy.id, exc)
            continue
        statement = future.result()
        if statement is None:
            result.excluded.append(tenancy.id)
        else:
            result.statements.append(statement)

    if result.skipped:
        logger.info("Batch %02d/%d cancelled; %d tenancies not started", month, year, len(result.skipped))
    return result
