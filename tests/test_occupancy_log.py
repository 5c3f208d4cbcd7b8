# tests/test_occupancy_log.py
from datetime import date
from decimal import Decimal
import pytest
from sqlalchemy.exc import SQLAlchemyError
from tenant_billing.errors import InvalidPeriodError, InvariantViolationError, NotFoundError, ValidationError
from tenant_billing.models import OccupancyEvent
from tenant_billing.services import kpis, occupancy_log, tenancies


def test_record_event_serializes_snapshots(db_session, make_property):
    prop = make_property()
    event = occupancy_log.record_event(
        5, prop.id, 'amendment', date(2025, 2, 1),
        previous_value={'monthly_rent': Decimal("900.00"), 'move_out_date': None},
        new_value={'monthly_rent': Decimal("950.00"), 'move_out_date': date(2025, 8, 31)},
        reason='Renewal',
    )
    stored = db_session.get(OccupancyEvent, event.id)
    assert stored.previous_value == {'monthly_rent': '900.00', 'move_out_date': None}
    assert stored.new_value == {'monthly_rent': '950.00', 'move_out_date': '2025-08-31'}
    assert stored.to_dict()['effective_date'] == '2025-02-01'


def test_record_event_rejects_unknown_type(db_session):
    with pytest.raises(ValidationError):
        occupancy_log.record_event(1, 1, 'eviction', date(2025, 1, 1))


def test_failed_insert_is_rolled_back(db_session, monkeypatch):
    def broken_commit():
        raise SQLAlchemyError("locked")

    monkeypatch.setattr(db_session, 'commit', broken_commit)
    with pytest.raises(SQLAlchemyError):
        occupancy_log.record_event(1, 1, 'move_in', date(2025, 1, 1))
    monkeypatch.undo()
    assert OccupancyEvent.query.count() == 0


def test_history_is_ordered_and_resumable(db_session):
    for day in (3, 1, 2):
        occupancy_log.record_event(7, 1, 'amendment', date(2025, 1, day))
    occupancy_log.record_event(8, 1, 'move_in', date(2025, 1, 1))

    events = occupancy_log.history_for(7)
    assert [e.effective_date.day for e in events] == [3, 1, 2]
    page = occupancy_log.history_for(7, limit=2)
    rest = occupancy_log.history_for(7, after_id=page[-1].id)
    assert [e.id for e in page + rest] == [e.id for e in events]


def test_history_for_property_filters(db_session, make_property):
    prop = make_property()
    occupancy_log.record_event(1, prop.id, 'move_in', date(2025, 1, 1))
    occupancy_log.record_event(1, prop.id, 'move_out', date(2025, 3, 31))
    occupancy_log.record_event(2, prop.id, 'move_in', date(2025, 4, 1))
    occupancy_log.record_event(3, prop.id + 1, 'move_in', date(2025, 4, 1))

    move_ins = occupancy_log.history_for_property(prop.id, event_type='move_in')
    assert [e.tenancy_id for e in move_ins] == [1, 2]
    spring = occupancy_log.history_for_property(prop.id, start_date=date(2025, 3, 1), end_date=date(2025, 4, 30))
    assert [e.event_type for e in spring] == ['move_out', 'move_in']


def test_monthly_statistics(db_session, make_property):
    prop = make_property(capacity=2)
    data = {'first_name': 'Ada', 'last_name': 'Lovelace', 'monthly_rent': '900.00'}
    tenancies.create_tenancy(prop.id, dict(data, move_in_date='2024-12-01'))
    mid = tenancies.create_tenancy(prop.id, dict(data, first_name='Grace', move_in_date='2025-02-15'))
    tenancies.move_out(mid.id, '2025-02-20')

    stats = occupancy_log.statistics_for(prop.id, 2025, month=2)
    # 28 days + Feb 15..20 (6 days) over 2 slots * 28 days
    assert stats['total_occupied_tenancy_days'] == 34
    assert stats['available_tenancy_days'] == 56
    assert stats['average_occupancy_rate'] == round(34 / 56, 4)
    assert stats['tenancies_present'] == 2
    assert stats['event_counts'] == {'move_in': 1, 'move_out': 1, 'amendment': 0}
    assert stats['tenancies_affected'] == 1


def test_yearly_statistics_without_capacity(db_session, make_property, make_tenancy):
    prop = make_property()
    make_tenancy(prop, date(2024, 1, 1), move_out=date(2024, 6, 30))
    stats = occupancy_log.statistics_for(prop.id, 2024)
    # 182 occupied days of leap-year 2024, one tenancy present
    assert stats['total_occupied_tenancy_days'] == 182
    assert stats['available_tenancy_days'] == 366
    assert stats['month'] is None


def test_statistics_validation(db_session, make_property):
    with pytest.raises(NotFoundError):
        occupancy_log.statistics_for(404, 2025, month=1)
    prop = make_property()
    with pytest.raises(InvalidPeriodError):
        occupancy_log.statistics_for(prop.id, 2025, month=13)


def test_kpi_occupancy_matches_statistics(db_session, make_property, make_tenancy):
    """The dashboard KPI and the audit statistics count days the same way."""
    prop = make_property(capacity=3)
    make_tenancy(prop, date(2025, 1, 15))
    make_tenancy(prop, date(2024, 5, 1), move_out=date(2025, 1, 10))
    make_tenancy(prop, date(2025, 2, 1))

    kpi = kpis.occupancy_rate_for_month(prop.id, 2025, 1)
    stats = occupancy_log.statistics_for(prop.id, 2025, month=1)
    assert kpi['occupied_days'] == 17 + 10 == stats['total_occupied_tenancy_days']
    assert kpi['total_slot_days'] == 93 == stats['available_tenancy_days']
    assert kpi['occupancy_rate'] == stats['average_occupancy_rate']
    assert kpi['month'] == '2025-01'


def test_kpi_move_counts(db_session, make_property, make_tenancy):
    prop = make_property()
    make_tenancy(prop, date(2025, 1, 15))
    make_tenancy(prop, date(2024, 5, 1), move_out=date(2025, 1, 10))
    make_tenancy(prop, date(2025, 2, 1))
    counts = kpis.move_in_out_counts(prop.id, date(2025, 1, 1), date(2025, 1, 31))
    assert counts == {'move_ins': 1, 'move_outs': 1}


def test_kpi_unknown_property(db_session):
    with pytest.raises(NotFoundError):
        kpis.occupancy_rate_for_month(404, 2025, 1)


def test_reversed_dates_raise_on_both_occupancy_paths(db_session, make_property, make_tenancy):
    prop = make_property(capacity=2)
    make_tenancy(prop, date(2024, 6, 1))
    broken = make_tenancy(prop, date(2025, 1, 20), move_out=date(2025, 1, 5))

    with pytest.raises(InvariantViolationError) as kpi_error:
        kpis.occupancy_rate_for_month(prop.id, 2025, 1)
    with pytest.raises(InvariantViolationError) as stats_error:
        occupancy_log.statistics_for(prop.id, 2025, month=1)
    assert kpi_error.value.details['tenancy_id'] == broken.id
    assert stats_error.value.details['tenancy_id'] == broken.id
