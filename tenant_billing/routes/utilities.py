from flask import Blueprint, request, jsonify
from ..services import utilities as utility_service

utilities_bp = Blueprint('utilities', __name__)


def _optional_int(name):
    value = request.args.get(name)
    if value is None or value == '':
        return None
    return int(value)


@utilities_bp.route('/properties/<int:property_id>/utilities', methods=['POST'])
def create_charge(property_id):
    data = request.json
    if not data:
        return jsonify({'error': 'Request body is required'}), 400
    charge = utility_service.create_charge(property_id, data)
    return jsonify(charge.to_dict()), 201

@utilities_bp.route('/properties/<int:property_id>/utilities', methods=['GET'])
def list_charges(property_id):
    try:
        month = _optional_int('month')
        year = _optional_int('year')
    except ValueError:
        return jsonify({'error': 'month and year must be integers'}), 400
    charges = utility_service.list_charges(property_id, month=month, year=year)
    return jsonify([c.to_dict() for c in charges]), 200

@utilities_bp.route('/utilities/<int:id>', methods=['GET'])
def get_charge(id):
    charge = utility_service.get_charge(id)
    data = charge.to_dict()
    data['allocations'] = [a.to_dict() for a in utility_service.allocations_for(id)]
    return jsonify(data), 200

@utilities_bp.route('/utilities/<int:id>', methods=['PATCH'])
def update_charge(id):
    data = request.json
    if not data:
        return jsonify({'error': 'Request body is required'}), 400
    charge = utility_service.update_charge(id, data)
    return jsonify(charge.to_dict()), 200

@utilities_bp.route('/utilities/<int:id>', methods=['DELETE'])
def delete_charge(id):
    utility_service.delete_charge(id)
    return '', 204

@utilities_bp.route('/utilities/<int:id>/allocations', methods=['GET'])
def charge_allocations(id):
    return jsonify([a.to_dict() for a in utility_service.allocations_for(id)]), 200

@utilities_bp.route('/utilities/<int:id>/reallocate', methods=['POST'])
def reallocate_charge(id):
    shares = utility_service.reallocate_charge(id)
    return jsonify([s.to_dict() for s in shares]), 200

# Re-run allocation for every charge of a property, optionally one month only
@utilities_bp.route('/properties/<int:property_id>/utilities/recalculate', methods=['POST'])
def recalculate_all(property_id):
    try:
        month = _optional_int('month')
        year = _optional_int('year')
    except ValueError:
        return jsonify({'error': 'month and year must be integers'}), 400
    summary = utility_service.recalculate_all(property_id, month=month, year=year)
    status = 207 if summary['errors'] else 200
    return jsonify(summary), status
