# tests/test_billing.py
import threading
from datetime import date
from decimal import Decimal
import pytest
from tenant_billing.errors import InvalidPeriodError, NotFoundError, PeriodFinalizedError
from tenant_billing.models import PERIOD_DRAFT, PERIOD_FINALIZED, BillingPeriod
from tenant_billing.services import billing, utilities


def add_charge(prop, month, year, amount, category='electricity', method='per_occupant'):
    return utilities.create_charge(prop.id, {'period_month': month, 'period_year': year, 'category': category,
                                             'total_amount': amount, 'allocation_method': method})


def test_generate_uses_previous_month_utilities(db_session, make_property, make_tenancy):
    prop = make_property()
    t1 = make_tenancy(prop, date(2024, 6, 1), rent="800.00")
    add_charge(prop, 2, 2025, "50.00")
    add_charge(prop, 3, 2025, "70.00")

    period, result = billing.generate_statements(prop.id, 3, 2025)
    [statement] = result.statements
    assert statement.tenancy_id == t1.id
    assert [(l.period_month, l.period_year) for l in statement.utility_lines] == [(2, 2025)]
    assert statement.total_due == Decimal("850.00")
    assert period.status == PERIOD_DRAFT
    assert period.tenant_count == 1
    assert period.total_rent == Decimal("800.00")
    assert period.total_utilities == Decimal("50.00")
    assert period.total_due == Decimal("850.00")
    assert period.calculated_at is not None


def test_tenancy_gone_before_month_gets_no_statement(db_session, make_property, make_tenancy):
    prop = make_property()
    gone = make_tenancy(prop, date(2024, 3, 1), move_out=date(2024, 12, 20))
    add_charge(prop, 12, 2024, "40.00")
    period, result = billing.generate_statements(prop.id, 1, 2025)
    # Occupied no day of January: no statement, even though it carries December utilities
    assert gone.id not in [s.tenancy_id for s in result.statements]
    assert result.statements == []
    assert period.tenant_count == 0


def test_mid_month_move_in_statement_amount(db_session, make_property, make_tenancy):
    prop = make_property()
    make_tenancy(prop, date(2025, 1, 15), rent="600.00")
    _, result = billing.generate_statements(prop.id, 1, 2025)
    assert result.statements[0].rent_line.billable_amount == Decimal("329.03")
    assert result.statements[0].rent_line.occupancy_percentage == 55


def test_missing_tenancy_is_recorded_not_raised(db_session, make_property, make_tenancy):
    prop = make_property()
    ids = [make_tenancy(prop, date(2024, 1, 1)).id for _ in range(4)]
    requested = ids[:2] + [9999] + ids[2:]
    period, result = billing.generate_statements(prop.id, 1, 2025, tenancy_ids=requested)
    assert len(result.statements) == 4
    assert [(e.tenancy_id, e.error_type) for e in result.errors] == [(9999, 'NotFoundError')]
    assert period.tenant_count == 4


def test_generate_twice_updates_same_period(db_session, make_property, make_tenancy):
    prop = make_property()
    make_tenancy(prop, date(2024, 1, 1), rent="500.00")
    first, _ = billing.generate_statements(prop.id, 1, 2025, notes="first run")
    make_tenancy(prop, date(2024, 1, 1), rent="700.00")
    second, _ = billing.generate_statements(prop.id, 1, 2025)
    assert first.id == second.id
    assert BillingPeriod.query.count() == 1
    assert second.total_rent == Decimal("1200.00")
    assert second.notes == "first run"
    assert [e.action for e in billing.audit_trail(second.id)] == ['created', 'recalculated', 'recalculated']


def test_finalize_is_one_way_and_audited(db_session, make_property, make_tenancy):
    prop = make_property()
    make_tenancy(prop, date(2024, 1, 1))
    period, _ = billing.generate_statements(prop.id, 1, 2025)
    billing.finalize_period(period.id, notes="closed")
    assert period.status == PERIOD_FINALIZED
    assert period.finalized_at is not None

    with pytest.raises(PeriodFinalizedError):
        billing.finalize_period(period.id)
    with pytest.raises(PeriodFinalizedError):
        billing.generate_statements(prop.id, 1, 2025)
    with pytest.raises(PeriodFinalizedError):
        billing.recalculate_period(period.id)

    actions = [e.action for e in billing.audit_trail(period.id)]
    assert actions == ['created', 'recalculated', 'finalized', 'refused', 'refused', 'refused']
    refused = [e.details['operation'] for e in billing.audit_trail(period.id) if e.action == 'refused']
    assert refused == ['finalize', 'generate', 'recalculate']


def test_finalized_totals_do_not_move(db_session, make_property, make_tenancy):
    prop = make_property()
    make_tenancy(prop, date(2024, 1, 1), rent="500.00")
    period, _ = billing.generate_statements(prop.id, 1, 2025)
    billing.finalize_period(period.id)
    make_tenancy(prop, date(2024, 1, 1), rent="700.00")
    with pytest.raises(PeriodFinalizedError):
        billing.generate_statements(prop.id, 1, 2025)
    assert billing.get_period(period.id).total_rent == Decimal("500.00")


def test_recalculate_draft_period(db_session, make_property, make_tenancy):
    prop = make_property()
    make_tenancy(prop, date(2024, 1, 1), rent="500.00")
    period, _ = billing.generate_statements(prop.id, 1, 2025)
    make_tenancy(prop, date(2025, 1, 16), rent="620.00")
    period, result = billing.recalculate_period(period.id)
    assert period.tenant_count == 2
    # 620 / 31 * 16 = 320.00
    assert period.total_rent == Decimal("820.00")


def test_preview_does_not_open_a_period(db_session, make_property, make_tenancy):
    prop = make_property()
    make_tenancy(prop, date(2024, 1, 1))
    result = billing.preview_statements(prop.id, 1, 2025)
    assert len(result.statements) == 1
    assert BillingPeriod.query.count() == 0


def test_cancelled_generation_reports_skipped(db_session, make_property, make_tenancy):
    prop = make_property()
    make_tenancy(prop, date(2024, 1, 1))
    cancel = threading.Event()
    cancel.set()
    period, result = billing.generate_statements(prop.id, 1, 2025, cancel_event=cancel)
    assert result.skipped and not result.statements
    assert billing.audit_trail(period.id)[-1].details['skipped'] == 1


def test_list_periods_newest_first(db_session, make_property, make_tenancy):
    prop = make_property()
    make_tenancy(prop, date(2024, 1, 1))
    for month, year in [(11, 2024), (1, 2025), (12, 2024)]:
        billing.generate_statements(prop.id, month, year)
    periods = billing.list_periods(prop.id, limit=2)
    assert [(p.month, p.year) for p in periods] == [(1, 2025), (12, 2024)]


def test_unknown_property_and_period(db_session):
    with pytest.raises(NotFoundError):
        billing.generate_statements(42, 1, 2025)
    with pytest.raises(NotFoundError):
        billing.finalize_period(42)


def test_invalid_period_is_rejected(db_session, make_property):
    prop = make_property()
    with pytest.raises(InvalidPeriodError):
        billing.generate_statements(prop.id, 0, 2025)


def test_subset_run_keeps_full_period_summary(db_session, make_property, make_tenancy):
    prop = make_property()
    make_tenancy(prop, date(2024, 1, 1), rent="1000.00")
    second = make_tenancy(prop, date(2024, 1, 1), rent="500.00")
    period, _ = billing.generate_statements(prop.id, 1, 2025)
    assert period.total_due == Decimal("1500.00")

    period, result = billing.generate_statements(prop.id, 1, 2025, tenancy_ids=[second.id])
    assert [s.tenancy_id for s in result.statements] == [second.id]
    assert period.tenant_count == 2
    assert period.total_rent == Decimal("1500.00")
    assert period.total_due == Decimal("1500.00")
    assert billing.audit_trail(period.id)[-1].details['requested'] == 1


def test_period_opened_elsewhere_is_reused(db_session, make_property, monkeypatch):
    prop = make_property()
    existing = billing.get_or_create_period(prop.id, 1, 2025)
    real_find = billing.find_period
    calls = []

    def find_before_other_insert_commits(*args):
        calls.append(args)
        return None if len(calls) == 1 else real_find(*args)

    monkeypatch.setattr(billing, 'find_period', find_before_other_insert_commits)
    period = billing.get_or_create_period(prop.id, 1, 2025)
    assert period.id == existing.id
    assert BillingPeriod.query.count() == 1
    assert [e.action for e in billing.audit_trail(existing.id)] == ['created']


def test_unweighted_utilities_are_not_flagged_prorated(db_session, make_property, make_tenancy):
    prop = make_property()
    full = make_tenancy(prop, date(2024, 1, 1))
    late = make_tenancy(prop, date(2025, 1, 15))
    add_charge(prop, 1, 2025, "100.00")
    _, result = billing.generate_statements(prop.id, 2, 2025)
    flags = {s.tenancy_id: s.to_dict()['utilities_prorated'] for s in result.statements}
    assert flags == {full.id: False, late.id: False}
    assert [l.allocated_amount for s in result.statements for l in s.utility_lines] == [Decimal("50.00")] * 2
