# tenant_billing/services/occupancy_log.py
import logging
from collections import Counter
from datetime import date
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from .. import db
from ..errors import NotFoundError, ValidationError
from ..models import EVENT_TYPES, OccupancyEvent, Property, Tenancy
from .occupancy import check_interval, days_in_month, month_bounds, occupied_days, validate_period

logger = logging.getLogger(__name__)


def _json_value(value):
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def _json_safe(snapshot):
    if snapshot is None:
        return None
    return {key: _json_value(value) for key, value in snapshot.items()}


def record_event(tenancy_id, property_id, event_type, effective_date,
                 previous_value=None, new_value=None, reason=None, commit=True):
    """
    Append one occupancy event.

    With ``commit=False`` the event joins the caller's transaction, so a
    lifecycle change and its event are written together or not at all.
    """
    if event_type not in EVENT_TYPES:
        raise ValidationError(f"event_type must be one of {', '.join(EVENT_TYPES)}", event_type=event_type)
    if effective_date is None:
        raise ValidationError("effective_date is required")
    event = OccupancyEvent(
        tenancy_id=tenancy_id,
        property_id=property_id,
        event_type=event_type,
        effective_date=effective_date,
        previous_value=_json_safe(previous_value),
        new_value=_json_safe(new_value),
        reason=reason,
    )
    db.session.add(event)
    if commit:
        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Failed to record %s event for tenancy %s", event_type, tenancy_id)
            raise
    logger.info("Recorded %s for tenancy %s effective %s", event_type, tenancy_id, effective_date.isoformat())
    return event


def history_for(tenancy_id, after_id=None, limit=None):
    """Events for a tenancy in the order they were recorded; resume with ``after_id``."""
    q = OccupancyEvent.query.filter(OccupancyEvent.tenancy_id == tenancy_id)
    if after_id is not None:
        q = q.filter(OccupancyEvent.id > after_id)
    q = q.order_by(OccupancyEvent.id)
    if limit:
        q = q.limit(limit)
    return q.all()


def history_for_property(property_id, event_type=None, start_date=None, end_date=None, limit=100):
    q = OccupancyEvent.query.filter(OccupancyEvent.property_id == property_id)
    if event_type:
        q = q.filter(OccupancyEvent.event_type == event_type)
    if start_date:
        q = q.filter(OccupancyEvent.effective_date >= start_date)
    if end_date:
        q = q.filter(OccupancyEvent.effective_date <= end_date)
    return q.order_by(OccupancyEvent.id).limit(limit).all()


def statistics_for(property_id, year, month=None):
    """
    Occupancy statistics for a property over one month or a whole year.

    The occupancy rate is occupied tenancy-days over available tenancy-days:
    ``capacity * days`` when the property declares a capacity, otherwise
    ``tenancies present in the range * days``.
    """
    months = [month] if month is not None else list(range(1, 13))
    for m in months:
        validate_period(m, year)

    prop = db.session.get(Property, property_id)
    if not prop:
        raise NotFoundError(f"Property {property_id} not found", property_id=property_id)

    tenancies = Tenancy.query.filter_by(property_id=property_id).all()
    total_days = sum(days_in_month(year, m) for m in months)

    occupied_total = 0
    present = set()
    for tenancy in tenancies:
        check_interval(tenancy.move_in_date, tenancy.move_out_date, tenancy.id)
        for m in months:
            days = occupied_days(tenancy.move_in_date, tenancy.move_out_date, year, m)
            if days:
                occupied_total += days
                present.add(tenancy.id)

    slots = prop.capacity if prop.capacity else len(present)
    available = slots * total_days
    rate = round(occupied_total / available, 4) if available else 0.0

    range_start = month_bounds(year, months[0])[0]
    range_end = month_bounds(year, months[-1])[1]
    events = OccupancyEvent.query.filter(
        OccupancyEvent.property_id == property_id,
        OccupancyEvent.effective_date >= range_start,
        OccupancyEvent.effective_date <= range_end,
    ).all()
    counts = Counter(e.event_type for e in events)

    return {
        'property_id': property_id,
        'year': year,
        'month': month,
        'total_occupied_tenancy_days': occupied_total,
        'available_tenancy_days': available,
        'average_occupancy_rate': rate,
        'tenancies_present': len(present),
        'tenancies_affected': len({e.tenancy_id for e in events}),
        'event_counts': {event_type: counts.get(event_type, 0) for event_type in EVENT_TYPES},
    }
