from flask import Blueprint, request, jsonify
from ..services import billing as billing_service

billing_bp = Blueprint('billing', __name__)


def _escalate():
    return request.args.get('strict') in ('1', 'true')


@billing_bp.route('/properties/<int:property_id>/statements/<int:year>/<int:month>', methods=['POST'])
def generate_statements(property_id, year, month):
    """Generate statements and store the period summary (a draft period is created if needed)."""
    data = request.get_json(silent=True) or {}
    tenancy_ids = data.get('tenancy_ids')
    if tenancy_ids is not None:
        if not isinstance(tenancy_ids, list) or not all(isinstance(i, int) and not isinstance(i, bool)
                                                        for i in tenancy_ids):
            return jsonify({'error': 'tenancy_ids must be a list of integers'}), 400
    period, result = billing_service.generate_statements(
        property_id, month, year, tenancy_ids=tenancy_ids, notes=data.get('notes'))
    if _escalate():
        result.raise_for_failures()
    body = result.to_dict()
    body['billing_period'] = period.to_dict()
    return jsonify(body), 207 if result.has_failures else 200

@billing_bp.route('/properties/<int:property_id>/statements/<int:year>/<int:month>', methods=['GET'])
def preview_statements(property_id, year, month):
    result = billing_service.preview_statements(property_id, month, year)
    return jsonify(result.to_dict()), 207 if result.has_failures else 200

@billing_bp.route('/properties/<int:property_id>/billing-periods', methods=['GET'])
def list_periods(property_id):
    limit = request.args.get('limit')
    try:
        limit = int(limit) if limit else None
    except ValueError:
        return jsonify({'error': 'limit must be an integer'}), 400
    periods = billing_service.list_periods(property_id, limit=limit)
    return jsonify([p.to_dict() for p in periods]), 200

@billing_bp.route('/billing-periods/<int:id>', methods=['GET'])
def get_period(id):
    return jsonify(billing_service.get_period(id).to_dict()), 200

@billing_bp.route('/billing-periods/<int:id>/recalculate', methods=['POST'])
def recalculate_period(id):
    period, result = billing_service.recalculate_period(id)
    if _escalate():
        result.raise_for_failures()
    body = result.to_dict()
    body['billing_period'] = period.to_dict()
    return jsonify(body), 207 if result.has_failures else 200

@billing_bp.route('/billing-periods/<int:id>/finalize', methods=['POST'])
def finalize_period(id):
    data = request.get_json(silent=True) or {}
    period = billing_service.finalize_period(id, notes=data.get('notes'))
    return jsonify(period.to_dict()), 200

@billing_bp.route('/billing-periods/<int:id>/audit', methods=['GET'])
def audit_trail(id):
    return jsonify([e.to_dict() for e in billing_service.audit_trail(id)]), 200
