# services package
# Only the pure engine is re-exported here; models import .types, so the
# persistence-facing modules are imported by their full path.

from .occupancy import days_in_month, occupied_days, validate_period
from .proration import prorate, prorate_for_month
from .allocation import allocate
from .statements import build_statement, build_statements

__all__ = ["days_in_month", "occupied_days", "validate_period", "prorate", "prorate_for_month",
           "allocate", "build_statement", "build_statements"]
