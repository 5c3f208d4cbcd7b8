from flask import Blueprint, request, jsonify
from ..services import tenancies as tenancy_service
from ..models import Allocation
from datetime import date

tenancies_bp = Blueprint('tenancies', __name__)

@tenancies_bp.route('/properties/<int:property_id>/tenancies', methods=['POST'])
def create_tenancy(property_id):
    tenancy = tenancy_service.create_tenancy(property_id, request.json)
    return jsonify(tenancy.to_dict()), 201

@tenancies_bp.route('/properties/<int:property_id>/tenancies', methods=['GET'])
def list_tenancies(property_id):
    active_on = request.args.get('active_on')
    if active_on:
        try:
            active_on = date.fromisoformat(active_on)
        except ValueError:
            return jsonify({'error': 'Invalid date format. Use YYYY-MM-DD'}), 400
    tenancies = tenancy_service.list_tenancies(property_id, active_on=active_on or None)
    return jsonify([t.to_dict() for t in tenancies]), 200

@tenancies_bp.route('/tenancies/<int:id>', methods=['GET'])
def get_tenancy(id):
    tenancy = tenancy_service.get_tenancy(id)
    data = tenancy.to_dict()
    data['is_active'] = tenancy.is_active
    return jsonify(data), 200

# PATCH endpoint to amend tenancy details
@tenancies_bp.route('/tenancies/<int:id>', methods=['PATCH'])
def amend_tenancy(id):
    tenancy = tenancy_service.amend_tenancy(id, request.json)
    return jsonify(tenancy.to_dict()), 200

@tenancies_bp.route('/tenancies/<int:id>/move-out', methods=['PUT'])
def move_out(id):
    data = request.json
    if not data or not data.get('move_out_date'):
        return jsonify({'error': 'move_out_date is required'}), 400
    tenancy = tenancy_service.move_out(id, data['move_out_date'], reason=data.get('reason'))
    return jsonify(tenancy.to_dict()), 200

@tenancies_bp.route('/tenancies/<int:id>', methods=['DELETE'])
def delete_tenancy(id):
    tenancy_service.delete_tenancy(id)
    return '', 204

@tenancies_bp.route('/tenancies/<int:id>/allocations', methods=['GET'])
def tenancy_allocations(id):
    tenancy = tenancy_service.get_tenancy(id)
    rows = tenancy.allocations.order_by(Allocation.charge_id).all()
    return jsonify([a.to_dict() for a in rows]), 200
