# tenant_billing/models.py
from . import db
from datetime import datetime
from decimal import Decimal
from .services.types import TenancySnapshot

MONEY = db.Numeric(12, 2)

UTILITY_CATEGORIES = ('electricity', 'water', 'heating', 'internet', 'gas', 'waste', 'other')
ALLOCATION_METHODS = ('per_occupant', 'per_occupant_weighted', 'per_area')
EVENT_TYPES = ('move_in', 'move_out', 'amendment')

PERIOD_DRAFT = 'draft'
PERIOD_FINALIZED = 'finalized'


def _iso(value):
    return value.isoformat() if value else None


def _money(value):
    return str(value) if value is not None else None


class Property(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    address = db.Column(db.String(200), nullable=True)
    capacity = db.Column(db.Integer, nullable=True)  # null means no limit
    total_area = db.Column(db.Float, nullable=True)

    tenancies = db.relationship('Tenancy', back_populates='prop', lazy='dynamic',
                                cascade='all, delete-orphan')
    utility_charges = db.relationship('UtilityCharge', back_populates='prop', lazy='dynamic',
                                      cascade='all, delete-orphan')
    billing_periods = db.relationship('BillingPeriod', back_populates='prop', lazy='dynamic',
                                      cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'address': self.address,
            'capacity': self.capacity,
            'total_area': self.total_area,
            'tenancy_count': self.tenancies.count()
        }


class Tenancy(db.Model):
    """One tenant's lease on a property, bounded by move-in/move-out dates."""
    id = db.Column(db.Integer, primary_key=True)
    property_id = db.Column(db.Integer, db.ForeignKey('property.id'), nullable=False)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)

    monthly_rent = db.Column(MONEY, nullable=False)
    room_area = db.Column(db.Float, nullable=True)
    number_of_occupants = db.Column(db.Integer, nullable=False, default=1)

    move_in_date = db.Column(db.Date, nullable=False)
    move_out_date = db.Column(db.Date, nullable=True)  # null means still active; last occupied day otherwise

    prop = db.relationship('Property', back_populates='tenancies')
    allocations = db.relationship('Allocation', back_populates='tenancy', lazy='dynamic',
                                  cascade='all, delete-orphan')

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    @property
    def is_active(self):
        return self.move_out_date is None

    def to_snapshot(self):
        return TenancySnapshot(
            id=self.id,
            property_id=self.property_id,
            monthly_rent=Decimal(self.monthly_rent),
            move_in_date=self.move_in_date,
            move_out_date=self.move_out_date,
            room_area=Decimal(str(self.room_area)) if self.room_area is not None else None,
            number_of_occupants=self.number_of_occupants or 1,
        )

    def to_dict(self):
        return {
            'id': self.id,
            'property_id': self.property_id,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'full_name': self.full_name,
            'monthly_rent': _money(self.monthly_rent),
            'room_area': self.room_area,
            'number_of_occupants': self.number_of_occupants,
            'move_in_date': _iso(self.move_in_date),
            'move_out_date': _iso(self.move_out_date)
        }


class UtilityCharge(db.Model):
    __table_args__ = (
        db.UniqueConstraint('property_id', 'period_month', 'period_year', 'category',
                            name='uq_charge_period_category'),
    )

    id = db.Column(db.Integer, primary_key=True)
    property_id = db.Column(db.Integer, db.ForeignKey('property.id'), nullable=False)
    period_month = db.Column(db.Integer, nullable=False)
    period_year = db.Column(db.Integer, nullable=False)
    category = db.Column(db.String(20), nullable=False)
    total_amount = db.Column(MONEY, nullable=False)
    allocation_method = db.Column(db.String(30), nullable=False)
    # 'pending' | 'allocated' | 'unallocated' (no tenancy to bill) | 'failed' (split impossible); the last two need operator attention
    allocation_status = db.Column(db.String(20), nullable=False, default='pending')
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    prop = db.relationship('Property', back_populates='utility_charges')
    allocations = db.relationship('Allocation', back_populates='charge', lazy='dynamic',
                                  cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'property_id': self.property_id,
            'period_month': self.period_month,
            'period_year': self.period_year,
            'category': self.category,
            'total_amount': _money(self.total_amount),
            'allocation_method': self.allocation_method,
            'allocation_status': self.allocation_status
        }


class Allocation(db.Model):
    """Materialized share of a charge; replaced wholesale, never edited."""
    __table_args__ = (
        db.UniqueConstraint('charge_id', 'tenancy_id', name='uq_allocation_charge_tenancy'),
    )

    id = db.Column(db.Integer, primary_key=True)
    charge_id = db.Column(db.Integer, db.ForeignKey('utility_charge.id'), nullable=False)
    tenancy_id = db.Column(db.Integer, db.ForeignKey('tenancy.id'), nullable=False)
    allocated_amount = db.Column(MONEY, nullable=False)
    occupied_days = db.Column(db.Integer, nullable=True)
    days_in_month = db.Column(db.Integer, nullable=True)
    # set only when the amount was scaled by occupied_days / days_in_month
    prorated = db.Column(db.Boolean, nullable=False, default=False)

    charge = db.relationship('UtilityCharge', back_populates='allocations')
    tenancy = db.relationship('Tenancy', back_populates='allocations')

    def to_dict(self):
        return {
            'id': self.id,
            'charge_id': self.charge_id,
            'tenancy_id': self.tenancy_id,
            'allocated_amount': _money(self.allocated_amount),
            'occupied_days': self.occupied_days,
            'days_in_month': self.days_in_month,
            'prorated': self.prorated
        }


class BillingPeriod(db.Model):
    __table_args__ = (
        db.UniqueConstraint('property_id', 'month', 'year', name='uq_billing_period'),
    )

    id = db.Column(db.Integer, primary_key=True)
    property_id = db.Column(db.Integer, db.ForeignKey('property.id'), nullable=False)
    month = db.Column(db.Integer, nullable=False)
    year = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=PERIOD_DRAFT)
    notes = db.Column(db.Text, nullable=True)

    tenant_count = db.Column(db.Integer, nullable=False, default=0)
    total_rent = db.Column(MONEY, nullable=False, default=Decimal('0.00'))
    total_utilities = db.Column(MONEY, nullable=False, default=Decimal('0.00'))
    total_due = db.Column(MONEY, nullable=False, default=Decimal('0.00'))
    calculated_at = db.Column(db.DateTime, nullable=True)
    finalized_at = db.Column(db.DateTime, nullable=True)

    prop = db.relationship('Property', back_populates='billing_periods')
    audit_entries = db.relationship('BillingAuditEntry', back_populates='billing_period',
                                    order_by='BillingAuditEntry.id', lazy='dynamic',
                                    cascade='all, delete-orphan')

    @property
    def is_finalized(self):
        return self.status == PERIOD_FINALIZED

    def to_dict(self):
        return {
            'id': self.id,
            'property_id': self.property_id,
            'month': self.month,
            'year': self.year,
            'status': self.status,
            'notes': self.notes,
            'tenant_count': self.tenant_count,
            'total_rent': _money(self.total_rent),
            'total_utilities': _money(self.total_utilities),
            'total_due': _money(self.total_due),
            'calculated_at': _iso(self.calculated_at),
            'finalized_at': _iso(self.finalized_at)
        }


class BillingAuditEntry(db.Model):
    """Append-only trail of what happened to a billing period."""
    id = db.Column(db.Integer, primary_key=True)
    billing_period_id = db.Column(db.Integer, db.ForeignKey('billing_period.id'), nullable=False)
    action = db.Column(db.String(20), nullable=False)  # created | recalculated | finalized | refused
    details = db.Column(db.JSON, nullable=True)
    recorded_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    billing_period = db.relationship('BillingPeriod', back_populates='audit_entries')

    def to_dict(self):
        return {
            'id': self.id,
            'billing_period_id': self.billing_period_id,
            'action': self.action,
            'details': self.details or {},
            'recorded_at': _iso(self.recorded_at)
        }


class OccupancyEvent(db.Model):
    """Append-only record of a move-in, move-out or amendment."""
    id = db.Column(db.Integer, primary_key=True)
    tenancy_id = db.Column(db.Integer, nullable=False, index=True)
    property_id = db.Column(db.Integer, nullable=False, index=True)
    event_type = db.Column(db.String(20), nullable=False)
    effective_date = db.Column(db.Date, nullable=False)
    previous_value = db.Column(db.JSON, nullable=True)
    new_value = db.Column(db.JSON, nullable=True)
    reason = db.Column(db.String(200), nullable=True)
    recorded_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'tenancy_id': self.tenancy_id,
            'property_id': self.property_id,
            'event_type': self.event_type,
            'effective_date': _iso(self.effective_date),
            'previous_value': self.previous_value,
            'new_value': self.new_value,
            'reason': self.reason,
            'recorded_at': _iso(self.recorded_at)
        }
