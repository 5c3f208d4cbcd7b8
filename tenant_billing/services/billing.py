# tenant_billing/services/billing.py
"""
Billing periods: statement generation and the draft -> finalized ledger.

Statements are computed in parallel from immutable snapshots; only the
period summary write touches the database, serially under the period lock.
"""
import logging
from collections import defaultdict
from datetime import datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .. import db
from ..config import BillingConfig
from ..errors import NotFoundError, PeriodFinalizedError
from ..models import (PERIOD_DRAFT, PERIOD_FINALIZED, Allocation, BillingAuditEntry, BillingPeriod,
                      Property, Tenancy, UtilityCharge)
from .locks import period_scope
from .occupancy import month_bounds, previous_period, validate_period
from .statements import BatchResult, build_statements
from .types import UtilityLine

logger = logging.getLogger(__name__)


def _audit(period, action, **details):
    entry = BillingAuditEntry(billing_period=period, action=action, details=details or None)
    db.session.add(entry)
    return entry


def get_period(period_id):
    period = db.session.get(BillingPeriod, period_id)
    if not period:
        raise NotFoundError(f"Billing period {period_id} not found", period_id=period_id)
    return period


def find_period(property_id, month, year):
    return BillingPeriod.query.filter_by(property_id=property_id, month=month, year=year).first()


def get_or_create_period(property_id, month, year):
    validate_period(month, year)
    with period_scope(property_id, month, year):
        period = find_period(property_id, month, year)
        if period is not None:
            return period
        period = BillingPeriod(property_id=property_id, month=month, year=year, status=PERIOD_DRAFT)
        db.session.add(period)
        _audit(period, 'created')
        try:
            db.session.commit()
        except IntegrityError:
            # Another process opened the same period first
            db.session.rollback()
            return find_period(property_id, month, year)
    logger.info("Opened billing period %02d/%d for property %s", month, year, property_id)
    return period


def _refuse(period, operation):
    _audit(period, 'refused', operation=operation)
    db.session.commit()
    logger.warning("Refused to %s finalized billing period %s (%02d/%d, property %s)",
                   operation, period.id, period.month, period.year, period.property_id)
    raise PeriodFinalizedError(
        f"Billing period {period.month:02d}/{period.year} is finalized",
        period_id=period.id,
    )


def _roster(property_id, month, year, tenancy_ids=None):
    month_start, month_end = month_bounds(year, month)
    q = Tenancy.query.filter(Tenancy.property_id == property_id)
    if tenancy_ids is not None:
        q = q.filter(Tenancy.id.in_(tenancy_ids))
    else:
        q = q.filter(Tenancy.move_in_date <= month_end,
                     (Tenancy.move_out_date == None) | (Tenancy.move_out_date >= month_start))
    return q.order_by(Tenancy.id).all()


def utility_lines_by_tenancy(property_id, month, year):
    """Allocated shares of the property's charges for (month, year), keyed by tenancy id."""
    rows = (db.session.query(Allocation, UtilityCharge)
            .join(UtilityCharge, Allocation.charge_id == UtilityCharge.id)
            .filter(UtilityCharge.property_id == property_id,
                    UtilityCharge.period_month == month,
                    UtilityCharge.period_year == year)
            .order_by(UtilityCharge.category, UtilityCharge.id)
            .all())
    lines = defaultdict(list)
    for allocation, charge in rows:
        lines[allocation.tenancy_id].append(UtilityLine(
            charge_id=charge.id,
            category=charge.category,
            period_month=charge.period_month,
            period_year=charge.period_year,
            allocated_amount=allocation.allocated_amount,
            prorated=allocation.prorated,
        ))
    return lines


def _run_batch(property_id, month, year, tenancy_ids=None, cancel_event=None):
    result = BatchResult(month=month, year=year)
    tenancies = _roster(property_id, month, year, tenancy_ids)
    if tenancy_ids is not None:
        found = {t.id for t in tenancies}
        for missing in sorted(set(tenancy_ids) - found):
            result.add_error(missing, NotFoundError(
                f"Tenancy {missing} not found on property {property_id}", tenancy_id=missing))

    # Snapshots and utility lines are read up front; worker threads never touch the session
    snapshots = [t.to_snapshot() for t in tenancies]
    util_month, util_year = previous_period(month, year)
    lines = utility_lines_by_tenancy(property_id, util_month, util_year)

    return build_statements(snapshots, month, year, lambda tenancy_id: lines.get(tenancy_id, ()),
                            max_workers=BillingConfig.BATCH_MAX_WORKERS,
                            cancel_event=cancel_event, result=result)


def _require_property(property_id):
    prop = db.session.get(Property, property_id)
    if not prop:
        raise NotFoundError(f"Property {property_id} not found", property_id=property_id)
    return prop


def preview_statements(property_id, month, year):
    """Compute statements without opening or touching the billing period."""
    validate_period(month, year)
    _require_property(property_id)
    return _run_batch(property_id, month, year)


def generate_statements(property_id, month, year, tenancy_ids=None, notes=None, cancel_event=None):
    """
    Build statements for a property's month and record the period summary.

    Per-tenancy failures land in the result's ``errors`` and never abort the
    batch. Returns ``(period, BatchResult)``.
    """
    validate_period(month, year)
    _require_property(property_id)

    period = get_or_create_period(property_id, month, year)
    if period.is_finalized:
        _refuse(period, 'generate')

    result = _run_batch(property_id, month, year, tenancy_ids, cancel_event)
    # The period summary always covers every tenancy present in the month
    summary = result if tenancy_ids is None else _run_batch(property_id, month, year)

    with period_scope(property_id, month, year):
        db.session.refresh(period)
        if period.is_finalized:
            _refuse(period, 'generate')
        try:
            period.tenant_count = len(summary.statements)
            period.total_rent = summary.total_rent
            period.total_utilities = summary.total_utilities
            period.total_due = summary.total_due
            period.calculated_at = datetime.utcnow()
            if notes is not None:
                period.notes = notes
            _audit(period, 'recalculated',
                   tenant_count=period.tenant_count,
                   total_due=str(summary.total_due),
                   requested=len(tenancy_ids) if tenancy_ids is not None else None,
                   errors=len(result.errors),
                   excluded=len(result.excluded),
                   skipped=len(result.skipped))
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Failed to store billing period %02d/%d for property %s", month, year, property_id)
            raise

    if result.has_failures:
        logger.warning("Generated %d statements for property %s %02d/%d with %d failures",
                       len(result.statements), property_id, month, year, len(result.errors))
    else:
        logger.info("Generated %d statements for property %s %02d/%d, total due %s",
                    len(result.statements), property_id, month, year, result.total_due)
    return period, result


def recalculate_period(period_id):
    period = get_period(period_id)
    if period.is_finalized:
        _refuse(period, 'recalculate')
    return generate_statements(period.property_id, period.month, period.year)


def finalize_period(period_id, notes=None):
    """Freeze a period. One-way: a finalized period is never reopened."""
    period = get_period(period_id)
    with period_scope(period.property_id, period.month, period.year):
        db.session.refresh(period)
        if period.is_finalized:
            _refuse(period, 'finalize')
        period.status = PERIOD_FINALIZED
        period.finalized_at = datetime.utcnow()
        if notes is not None:
            period.notes = notes
        _audit(period, 'finalized', total_due=str(period.total_due), tenant_count=period.tenant_count)
        db.session.commit()
    logger.info("Finalized billing period %s (%02d/%d, property %s)",
                period.id, period.month, period.year, period.property_id)
    return period


def list_periods(property_id, limit=None):
    limit = limit or BillingConfig.BILLING_PERIOD_LIST_LIMIT
    return (BillingPeriod.query.filter_by(property_id=property_id)
            .order_by(BillingPeriod.year.desc(), BillingPeriod.month.desc())
            .limit(limit).all())


def audit_trail(period_id):
    period = get_period(period_id)
    return period.audit_entries.all()
