# tenant_billing/services/kpis.py
from ..models import Property, Tenancy
from .. import db
from ..errors import NotFoundError
from .occupancy import check_interval, days_in_month, occupied_days, validate_period


def move_in_out_counts(property_id, start_date, end_date):
    """
    Returns the number of move-ins and move-outs for a property in the given date range.
    """
    tenancies = Tenancy.query.filter(Tenancy.property_id == property_id).all()
    move_ins = sum(1 for t in tenancies if start_date <= t.move_in_date <= end_date)
    move_outs = sum(1 for t in tenancies if t.move_out_date and start_date <= t.move_out_date <= end_date)
    return {'move_ins': move_ins, 'move_outs': move_outs}


def occupancy_rate_for_month(property_id, year, month):
    """
    Returns the occupancy rate for a property for a given calendar month (YYYY, MM).

    Occupied tenancy-days come from the same day count the statements use;
    the available days are ``capacity * days`` (or tenancies present when the
    property declares no capacity).
    """
    validate_period(month, year)
    prop = db.session.get(Property, property_id)
    if not prop:
        raise NotFoundError(f"Property {property_id} not found", property_id=property_id)
    days = days_in_month(year, month)
    per_tenancy = []
    for t in prop.tenancies:
        check_interval(t.move_in_date, t.move_out_date, t.id)
        per_tenancy.append(occupied_days(t.move_in_date, t.move_out_date, year, month))
    occupied = sum(per_tenancy)
    slots = prop.capacity if prop.capacity else sum(1 for d in per_tenancy if d)
    total_slot_days = slots * days
    occupancy_rate = round(occupied / total_slot_days, 4) if total_slot_days > 0 else 0.0
    return {
        'occupancy_rate': occupancy_rate,
        'total_slot_days': total_slot_days,
        'occupied_days': occupied,
        'month': f"{year:04d}-{month:02d}"
    }
