# tenant_billing/services/utilities.py
"""Utility charges and their materialized allocation sets."""
import logging

from sqlalchemy.exc import SQLAlchemyError

from .. import db
from ..config import BillingConfig
from ..errors import AllocationError, NotFoundError, PeriodFinalizedError, ValidationError
from ..models import (ALLOCATION_METHODS, UTILITY_CATEGORIES, Allocation, BillingPeriod,
                      PERIOD_FINALIZED, Property, Tenancy, UtilityCharge)
from .allocation import allocate
from .locks import charge_scope
from .money import quantize_cent
from .occupancy import check_interval, month_bounds, next_period, validate_period

logger = logging.getLogger(__name__)


def is_frozen(charge):
    """A charge is billed on the next month's statements; finalizing that period freezes it."""
    return period_is_frozen(charge.property_id, charge.period_month, charge.period_year)


def period_is_frozen(property_id, charge_month, charge_year):
    month, year = next_period(charge_month, charge_year)
    period = BillingPeriod.query.filter_by(property_id=property_id, month=month, year=year).first()
    return period is not None and period.status == PERIOD_FINALIZED


def get_charge(charge_id):
    charge = db.session.get(UtilityCharge, charge_id)
    if not charge:
        raise NotFoundError(f"Utility charge {charge_id} not found", charge_id=charge_id)
    return charge


def roster_for(charge):
    """Tenancies of the charge's property that occupied at least one day of its month."""
    month_start, month_end = month_bounds(charge.period_year, charge.period_month)
    tenancies = Tenancy.query.filter(
        Tenancy.property_id == charge.property_id,
        Tenancy.move_in_date <= month_end,
        (Tenancy.move_out_date == None) | (Tenancy.move_out_date >= month_start)
    ).order_by(Tenancy.id).all()
    for tenancy in tenancies:
        check_interval(tenancy.move_in_date, tenancy.move_out_date, tenancy.id)
    return [t.to_snapshot() for t in tenancies]


def reallocate_charge(charge_id, occupancy_weighted=None):
    """
    Recompute a charge's allocations, replacing any previous set.

    Runs under the charge's exclusivity scope. The delete and the inserts
    are committed together; on any failure the session is rolled back and
    the previous allocation set stays in place.
    """
    if occupancy_weighted is None:
        occupancy_weighted = BillingConfig.ALLOCATION_OCCUPANCY_WEIGHTING
    with charge_scope(charge_id):
        charge = get_charge(charge_id)
        if is_frozen(charge):
            raise PeriodFinalizedError(
                f"Charge {charge.id} is billed in a finalized period; allocations are frozen",
                charge_id=charge.id,
            )
        try:
            shares = allocate(
                charge.total_amount,
                charge.allocation_method,
                roster_for(charge),
                total_area=charge.prop.total_area,
                period=(charge.period_month, charge.period_year),
                occupancy_weighted=occupancy_weighted,
            )
            Allocation.query.filter_by(charge_id=charge.id).delete(synchronize_session='fetch')
            for share in shares:
                db.session.add(Allocation(
                    charge_id=charge.id,
                    tenancy_id=share.tenancy_id,
                    allocated_amount=share.allocated_amount,
                    occupied_days=share.occupied_days,
                    days_in_month=share.days_in_month,
                    prorated=share.prorated,
                ))
            charge.allocation_status = 'allocated' if shares else 'unallocated'
            db.session.commit()
        except (AllocationError, SQLAlchemyError):
            db.session.rollback()
            raise

    if shares:
        logger.info("Allocated %s %s for %02d/%d among %d tenancies using %s",
                    charge.total_amount, charge.category, charge.period_month, charge.period_year,
                    len(shares), charge.allocation_method)
    else:
        logger.warning("No tenancies to bill %s charge %s for %02d/%d; left unallocated",
                       charge.category, charge.id, charge.period_month, charge.period_year)
    return shares


def _charge_fields(data, partial=False):
    fields = {}
    if not partial or 'period_month' in data or 'period_year' in data:
        try:
            month = int(data['period_month'])
            year = int(data['period_year'])
        except (KeyError, TypeError, ValueError):
            raise ValidationError("period_month and period_year must be integers")
        validate_period(month, year)
        fields['period_month'], fields['period_year'] = month, year
    if not partial or 'category' in data:
        category = data.get('category')
        if category not in UTILITY_CATEGORIES:
            raise ValidationError(f"category must be one of {', '.join(UTILITY_CATEGORIES)}")
        fields['category'] = category
    if not partial or 'total_amount' in data:
        try:
            amount = quantize_cent(data.get('total_amount'))
        except ValueError:
            raise ValidationError("total_amount must be a number")
        if amount < 0:
            raise ValidationError("total_amount must not be negative")
        fields['total_amount'] = amount
    if not partial or 'allocation_method' in data:
        method = data.get('allocation_method')
        if method not in ALLOCATION_METHODS:
            raise ValidationError(f"allocation_method must be one of {', '.join(ALLOCATION_METHODS)}")
        fields['allocation_method'] = method
    return fields


def _ensure_unique(property_id, month, year, category, exclude_id=None):
    q = UtilityCharge.query.filter_by(property_id=property_id, period_month=month,
                                      period_year=year, category=category)
    if exclude_id is not None:
        q = q.filter(UtilityCharge.id != exclude_id)
    if q.first():
        raise ValidationError(f"A {category} charge already exists for {month:02d}/{year}")


def _flag_failed(charge, error):
    charge.allocation_status = 'failed'
    db.session.commit()
    logger.warning("Charge %s (%s %02d/%d) could not be allocated: %s",
                   charge.id, charge.category, charge.period_month, charge.period_year, error)


def create_charge(property_id, data):
    prop = db.session.get(Property, property_id)
    if not prop:
        raise NotFoundError(f"Property {property_id} not found", property_id=property_id)
    fields = _charge_fields(data)
    _ensure_unique(property_id, fields['period_month'], fields['period_year'], fields['category'])
    if period_is_frozen(property_id, fields['period_month'], fields['period_year']):
        raise PeriodFinalizedError("Cannot add a charge billed in a finalized period")
    charge = UtilityCharge(property_id=property_id, allocation_status='pending', **fields)
    db.session.add(charge)
    db.session.commit()
    try:
        reallocate_charge(charge.id)
    except AllocationError as e:
        _flag_failed(charge, e)
        raise
    return charge


def update_charge(charge_id, data):
    charge = get_charge(charge_id)
    if is_frozen(charge):
        raise PeriodFinalizedError(f"Charge {charge.id} is billed in a finalized period", charge_id=charge.id)
    fields = _charge_fields(data, partial=True)
    month = fields.get('period_month', charge.period_month)
    year = fields.get('period_year', charge.period_year)
    category = fields.get('category', charge.category)
    _ensure_unique(charge.property_id, month, year, category, exclude_id=charge.id)
    if period_is_frozen(charge.property_id, month, year):
        raise PeriodFinalizedError("Cannot move a charge into a finalized period", charge_id=charge.id)
    for key, value in fields.items():
        setattr(charge, key, value)
    charge.allocation_status = 'pending'
    db.session.commit()
    try:
        reallocate_charge(charge.id)
    except AllocationError as e:
        _flag_failed(charge, e)
        raise
    return charge


def delete_charge(charge_id):
    charge = get_charge(charge_id)
    if is_frozen(charge):
        raise PeriodFinalizedError(f"Charge {charge.id} is billed in a finalized period", charge_id=charge.id)
    with charge_scope(charge_id):
        db.session.delete(charge)
        db.session.commit()
    logger.info("Deleted utility charge %s", charge_id)


def list_charges(property_id, month=None, year=None):
    q = UtilityCharge.query.filter_by(property_id=property_id)
    if month is not None:
        q = q.filter_by(period_month=month)
    if year is not None:
        q = q.filter_by(period_year=year)
    return q.order_by(UtilityCharge.period_year.desc(), UtilityCharge.period_month.desc(),
                      UtilityCharge.category).all()


def allocations_for(charge_id):
    get_charge(charge_id)
    return Allocation.query.filter_by(charge_id=charge_id).order_by(Allocation.tenancy_id).all()


def recalculate_all(property_id, month=None, year=None):
    """Re-run allocation for every matching charge; one failure does not stop the rest."""
    charges = list_charges(property_id, month=month, year=year)
    recalculated, frozen, errors = 0, [], []
    for charge in sorted(charges, key=lambda c: (c.period_year, c.period_month, c.id)):
        label = f"{charge.category} {charge.period_month:02d}/{charge.period_year}"
        try:
            reallocate_charge(charge.id)
            recalculated += 1
        except PeriodFinalizedError:
            frozen.append(charge.id)
        except AllocationError as e:
            _flag_failed(charge, e)
            errors.append({'charge_id': charge.id, 'charge': label, 'error': str(e)})
        except SQLAlchemyError as e:
            logger.error("Failed to recalculate charge %s (%s): %s", charge.id, label, e)
            errors.append({'charge_id': charge.id, 'charge': label, 'error': str(e)})
    return {
        'property_id': property_id,
        'recalculated': recalculated,
        'total': len(charges),
        'frozen': frozen,
        'errors': errors,
    }


def reallocate_property(property_id, since=None):
    """
    Re-run allocation after a roster change for charges from ``since`` onward.

    Frozen charges are left alone. Allocation failures are logged and
    returned rather than raised, so a roster change is never blocked by a
    charge that cannot currently be split.
    """
    q = UtilityCharge.query.filter_by(property_id=property_id)
    charges = q.all()
    if since is not None:
        floor = (since.year, since.month)
        charges = [c for c in charges if (c.period_year, c.period_month) >= floor]
    failures = []
    for charge in sorted(charges, key=lambda c: (c.period_year, c.period_month, c.id)):
        if is_frozen(charge):
            continue
        try:
            reallocate_charge(charge.id)
        except AllocationError as e:
            _flag_failed(charge, e)
            failures.append({'charge_id': charge.id, 'error': str(e)})
    return failures
