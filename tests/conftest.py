import pytest
from datetime import date
from decimal import Decimal
from tenant_billing import create_app, db
from tenant_billing.config import TestingConfig
from tenant_billing.models import *  # register models so metadata is available
from tenant_billing.services.types import TenancySnapshot

@pytest.fixture(scope='module')
def app():
    """Create and configure a new app instance for each test module."""
    app = create_app(config_class=TestingConfig)
    yield app

@pytest.fixture(scope='function')
def db_session(app):
    """
    Fresh tables for each test function, using the extension's own session.

    Services commit and roll back on db.session themselves, so each test
    gets its own schema instead of an outer transaction that a service
    rollback would unwind. sqlite:///:memory: keeps a single connection
    for the app, so the tables survive between requests in one test.
    """
    with app.app_context():
        db.create_all()
        try:
            yield db.session
        finally:
            db.session.remove()
            db.drop_all()

@pytest.fixture(scope='function')
def client(app, db_session):
    """A Flask test client to make HTTP requests during integration tests."""
    return app.test_client()

@pytest.fixture
def make_property(db_session):
    def _make(name="Maple House", capacity=None, total_area=None):
        prop = Property(name=name, capacity=capacity, total_area=total_area)
        db_session.add(prop)
        db_session.commit()
        return prop
    return _make

@pytest.fixture
def make_tenancy(db_session):
    """Insert a tenancy row directly, without lifecycle events or reallocation."""
    def _make(prop, move_in, move_out=None, rent="1000.00", room_area=None, occupants=1,
              first_name="Test", last_name="Tenant"):
        tenancy = Tenancy(property_id=prop.id, first_name=first_name, last_name=last_name,
                          monthly_rent=Decimal(rent), room_area=room_area,
                          number_of_occupants=occupants, move_in_date=move_in, move_out_date=move_out)
        db_session.add(tenancy)
        db_session.commit()
        return tenancy
    return _make

def snapshot(id, move_in=date(2025, 1, 1), move_out=None, rent="1000.00", room_area=None,
             occupants=1, property_id=1):
    """Plain TenancySnapshot builder for the pure engine tests."""
    return TenancySnapshot(
        id=id,
        property_id=property_id,
        monthly_rent=Decimal(rent),
        move_in_date=move_in,
        move_out_date=move_out,
        room_area=Decimal(str(room_area)) if room_area is not None else None,
        number_of_occupants=occupants,
    )
