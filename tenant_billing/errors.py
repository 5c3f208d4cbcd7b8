"""Domain errors raised by the billing engine and their JSON translation."""
import logging

from flask import jsonify

logger = logging.getLogger(__name__)


class BillingError(Exception):
    """Base class for every error the engine raises on purpose."""
    status_code = 400

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        body = {'error': self.message, 'type': type(self).__name__}
        if self.details:
            body['details'] = self.details
        return body


class ValidationError(BillingError):
    """Input the engine refuses before touching any state."""
    status_code = 400


class InvalidPeriodError(BillingError):
    """Month outside 1-12 or a year that is not four digits."""
    status_code = 400


class AllocationError(BillingError):
    """A utility charge cannot be split: zero denominator, bad method or amount."""
    status_code = 422


class NotFoundError(BillingError):
    status_code = 404


class ConcurrentModificationError(BillingError):
    """Another recompute holds the same charge or billing period."""
    status_code = 409


class PeriodFinalizedError(BillingError):
    """The billing period is finalized and its amounts are frozen."""
    status_code = 409


class InvariantViolationError(BillingError):
    """Persisted data breaks a basic invariant, e.g. move-out before move-in."""
    status_code = 500


class PartialBatchFailure(BillingError):
    """Carries a batch result whose per-item errors the caller asked to escalate."""
    status_code = 207

    def __init__(self, result):
        super().__init__(
            f'{len(result.errors)} of {result.attempted} statements failed',
        )
        self.result = result

    def to_dict(self):
        body = super().to_dict()
        body.update(self.result.to_dict())
        return body


def register_error_handlers(app):
    @app.errorhandler(BillingError)
    def handle_billing_error(e):
        if e.status_code >= 500:
            logger.error('%s: %s', type(e).__name__, e.message)
        return jsonify(e.to_dict()), e.status_code
