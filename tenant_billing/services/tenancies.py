# tenant_billing/services/tenancies.py
"""
Tenancy lifecycle: create, move out, amend, delete.

Each change writes the tenancy and its occupancy event in one commit, then
re-runs allocation for the property's non-frozen charges from the earliest
affected month.
"""
import logging
import re
from datetime import date

from sqlalchemy.exc import SQLAlchemyError

from .. import db
from ..config import ValidationConfig
from ..errors import NotFoundError, PeriodFinalizedError, ValidationError
from ..models import Property, Tenancy
from .money import quantize_cent
from .occupancy_log import record_event
from .utilities import is_frozen, reallocate_property

logger = logging.getLogger(__name__)

AMENDABLE_FIELDS = ('first_name', 'last_name', 'monthly_rent', 'room_area',
                    'number_of_occupants', 'move_in_date', 'move_out_date')
# Changes to these alter how utility charges split
ALLOCATION_INPUTS = ('room_area', 'number_of_occupants', 'move_in_date', 'move_out_date')


def _parse_date(value, field):
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a date in YYYY-MM-DD format", field=field)


def _validate_name(value, field):
    if not value or not str(value).strip():
        raise ValidationError(f"{field} is required", field=field)
    value = str(value).strip()
    if not re.match(ValidationConfig.TENANT_NAME_REGEX, value):
        raise ValidationError(f"{field} must match pattern {ValidationConfig.TENANT_NAME_REGEX}", field=field)
    if len(value) > ValidationConfig.TENANT_NAME_MAX_LENGTH:
        raise ValidationError(f"{field} max length is {ValidationConfig.TENANT_NAME_MAX_LENGTH}", field=field)
    return value


def _validate_rent(value):
    try:
        rent = quantize_cent(value)
    except ValueError:
        raise ValidationError("monthly_rent must be a number", field='monthly_rent')
    if rent < 0:
        raise ValidationError("monthly_rent must not be negative", field='monthly_rent')
    return rent


def _validate_area(value):
    if value is None:
        return None
    try:
        area = float(value)
    except (TypeError, ValueError):
        raise ValidationError("room_area must be a number", field='room_area')
    if area <= 0:
        raise ValidationError("room_area must be positive", field='room_area')
    return area


def _validate_occupants(value):
    if isinstance(value, bool):
        raise ValidationError("number_of_occupants must be an integer", field='number_of_occupants')
    try:
        occupants = int(value)
    except (TypeError, ValueError):
        raise ValidationError("number_of_occupants must be an integer", field='number_of_occupants')
    if occupants < 1:
        raise ValidationError("number_of_occupants must be at least 1", field='number_of_occupants')
    return occupants


def _check_dates(move_in, move_out):
    if move_out is not None and move_out < move_in:
        raise ValidationError("move_out_date must not be before move_in_date",
                              move_in_date=move_in.isoformat(), move_out_date=move_out.isoformat())


def _check_capacity(prop, move_in, move_out, exclude_id=None):
    """Refuse a tenancy that would push concurrent tenancies past the property's capacity."""
    if not ValidationConfig.ENFORCE_PROPERTY_CAPACITY or not prop.capacity:
        return
    q = Tenancy.query.filter(Tenancy.property_id == prop.id)
    if exclude_id is not None:
        q = q.filter(Tenancy.id != exclude_id)
    if move_out is not None:
        q = q.filter(Tenancy.move_in_date <= move_out)
    q = q.filter((Tenancy.move_out_date == None) | (Tenancy.move_out_date >= move_in))
    overlapping = q.all()

    # Peak concurrency inside the new interval is reached at one of the move-in dates
    checkpoints = {move_in} | {t.move_in_date for t in overlapping if t.move_in_date > move_in}
    for day in checkpoints:
        present = sum(1 for t in overlapping
                      if t.move_in_date <= day and (t.move_out_date is None or t.move_out_date >= day))
        if present >= prop.capacity:
            raise ValidationError(
                f"Property {prop.name} is at capacity ({prop.capacity}) on {day.isoformat()}",
                property_id=prop.id, capacity=prop.capacity,
            )


def snapshot(tenancy):
    return {field: getattr(tenancy, field) for field in AMENDABLE_FIELDS}


def get_tenancy(tenancy_id):
    tenancy = db.session.get(Tenancy, tenancy_id)
    if not tenancy:
        raise NotFoundError(f"Tenancy {tenancy_id} not found", tenancy_id=tenancy_id)
    return tenancy


def list_tenancies(property_id, active_on=None):
    q = Tenancy.query.filter_by(property_id=property_id)
    if active_on is not None:
        q = q.filter(Tenancy.move_in_date <= active_on,
                     (Tenancy.move_out_date == None) | (Tenancy.move_out_date >= active_on))
    return q.order_by(Tenancy.id).all()


def _commit(action, tenancy_id):
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to %s tenancy %s", action, tenancy_id)
        raise


def _reallocate(tenancy, since):
    failures = reallocate_property(tenancy.property_id, since=since)
    if failures:
        logger.warning("%d charges could not be reallocated after change to tenancy %s",
                       len(failures), tenancy.id)
    return failures


def create_tenancy(property_id, data):
    prop = db.session.get(Property, property_id)
    if not prop:
        raise NotFoundError(f"Property {property_id} not found", property_id=property_id)
    if not data:
        raise ValidationError("Request body is required")
    if data.get('move_in_date') is None or data.get('monthly_rent') is None:
        raise ValidationError("move_in_date and monthly_rent are required")

    move_in = _parse_date(data['move_in_date'], 'move_in_date')
    move_out = _parse_date(data['move_out_date'], 'move_out_date') if data.get('move_out_date') else None
    _check_dates(move_in, move_out)
    _check_capacity(prop, move_in, move_out)

    tenancy = Tenancy(
        property_id=prop.id,
        first_name=_validate_name(data.get('first_name'), 'first_name'),
        last_name=_validate_name(data.get('last_name'), 'last_name'),
        monthly_rent=_validate_rent(data['monthly_rent']),
        room_area=_validate_area(data.get('room_area')),
        number_of_occupants=_validate_occupants(data.get('number_of_occupants', 1)),
        move_in_date=move_in,
        move_out_date=move_out,
    )
    db.session.add(tenancy)
    db.session.flush()
    record_event(tenancy.id, prop.id, 'move_in', move_in, new_value=snapshot(tenancy),
                 reason=data.get('reason'), commit=False)
    if move_out is not None:
        record_event(tenancy.id, prop.id, 'move_out', move_out, new_value={'move_out_date': move_out},
                     reason=data.get('reason'), commit=False)
    _commit('create', tenancy.id)
    logger.info("Tenancy %s (%s) moved into property %s on %s",
                tenancy.id, tenancy.full_name, prop.id, move_in.isoformat())
    _reallocate(tenancy, move_in)
    return tenancy


def move_out(tenancy_id, move_out_date, reason=None):
    """Set the last occupied day. A move-out is recorded once and never reopened."""
    tenancy = get_tenancy(tenancy_id)
    move_out_dt = _parse_date(move_out_date, 'move_out_date')
    if tenancy.move_out_date is not None:
        raise ValidationError(f"Tenancy {tenancy.id} already moved out on {tenancy.move_out_date.isoformat()}",
                              tenancy_id=tenancy.id)
    _check_dates(tenancy.move_in_date, move_out_dt)

    tenancy.move_out_date = move_out_dt
    record_event(tenancy.id, tenancy.property_id, 'move_out', move_out_dt,
                 previous_value={'move_out_date': None}, new_value={'move_out_date': move_out_dt},
                 reason=reason, commit=False)
    _commit('move out', tenancy.id)
    logger.info("Tenancy %s moved out on %s", tenancy.id, move_out_dt.isoformat())
    _reallocate(tenancy, move_out_dt)
    return tenancy


def amend_tenancy(tenancy_id, data):
    tenancy = get_tenancy(tenancy_id)
    if not data:
        raise ValidationError("Request body is required")
    unknown = set(data) - set(AMENDABLE_FIELDS) - {'reason', 'effective_date'}
    if unknown:
        raise ValidationError(f"Cannot amend {', '.join(sorted(unknown))}")

    changes = {}
    for field in ('first_name', 'last_name'):
        if field in data:
            changes[field] = _validate_name(data[field], field)
    if 'monthly_rent' in data:
        changes['monthly_rent'] = _validate_rent(data['monthly_rent'])
    if 'room_area' in data:
        changes['room_area'] = _validate_area(data['room_area'])
    if 'number_of_occupants' in data:
        changes['number_of_occupants'] = _validate_occupants(data['number_of_occupants'])
    if 'move_in_date' in data:
        changes['move_in_date'] = _parse_date(data['move_in_date'], 'move_in_date')
    if 'move_out_date' in data:
        if data['move_out_date'] is None:
            if tenancy.move_out_date is not None:
                raise ValidationError("A move-out cannot be cleared; create a new tenancy instead",
                                      tenancy_id=tenancy.id)
        else:
            changes['move_out_date'] = _parse_date(data['move_out_date'], 'move_out_date')

    new_move_in = changes.get('move_in_date', tenancy.move_in_date)
    new_move_out = changes.get('move_out_date', tenancy.move_out_date)
    _check_dates(new_move_in, new_move_out)
    if 'move_in_date' in changes or 'move_out_date' in changes:
        _check_capacity(tenancy.prop, new_move_in, new_move_out, exclude_id=tenancy.id)

    effective = _parse_date(data['effective_date'], 'effective_date') if data.get('effective_date') else date.today()
    before = snapshot(tenancy)
    changed = {k: v for k, v in changes.items() if before[k] != v}
    if not changed:
        return tenancy

    for field, value in changed.items():
        setattr(tenancy, field, value)

    record_event(tenancy.id, tenancy.property_id, 'amendment', effective,
                 previous_value={k: before[k] for k in changed}, new_value=changed,
                 reason=data.get('reason'), commit=False)
    _commit('amend', tenancy.id)
    logger.info("Amended tenancy %s: %s", tenancy.id, ', '.join(sorted(changed)))
    if set(changed) & set(ALLOCATION_INPUTS):
        _reallocate(tenancy, min(before['move_in_date'], tenancy.move_in_date))
    return tenancy


def delete_tenancy(tenancy_id):
    tenancy = get_tenancy(tenancy_id)
    if any(is_frozen(a.charge) for a in tenancy.allocations):
        raise PeriodFinalizedError(
            f"Tenancy {tenancy.id} is billed in a finalized period and cannot be deleted",
            tenancy_id=tenancy.id,
        )
    property_id, since = tenancy.property_id, tenancy.move_in_date
    db.session.delete(tenancy)
    _commit('delete', tenancy_id)
    logger.info("Deleted tenancy %s from property %s", tenancy_id, property_id)
    failures = reallocate_property(property_id, since=since)
    if failures:
        logger.warning("%d charges could not be reallocated after deleting tenancy %s",
                       len(failures), tenancy_id)
