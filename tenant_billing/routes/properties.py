from flask import request, jsonify, Blueprint
from .. import db
from ..errors import PeriodFinalizedError
from ..models import PERIOD_FINALIZED, Property
from ..config import ValidationConfig
from ..services.utilities import reallocate_property
import re

properties_bp = Blueprint('properties', __name__)


def _validate_numbers(data):
    """Return an error message for a bad capacity/total_area, else None."""
    if data.get('capacity') is not None:
        if isinstance(data['capacity'], bool) or not isinstance(data['capacity'], int) or data['capacity'] < 1:
            return 'capacity must be a positive integer'
    if data.get('total_area') is not None:
        try:
            area = float(data['total_area'])
        except (TypeError, ValueError):
            return 'total_area must be a number'
        if area <= 0:
            return 'total_area must be positive'
    return None


def _name_taken(name, exclude_id=None):
    q = Property.query
    if exclude_id is not None:
        q = q.filter(Property.id != exclude_id)
    if ValidationConfig.ENFORCE_UNIQUE_PROPERTY_NAME_CASE_INSENSITIVE:
        q = q.filter(db.func.lower(Property.name) == name.lower())
    else:
        q = q.filter_by(name=name)
    return q.first() is not None


@properties_bp.route('/properties', methods=['POST'])
def create_property():
    data = request.json
    if not data or not data.get('name') or not str(data['name']).strip():
        return jsonify({'error': 'Property name is required'}), 400
    # Validate property name format and length
    name = str(data['name']).strip()
    if not re.match(ValidationConfig.PROPERTY_NAME_REGEX, name):
        return jsonify({'error': f'Property name must match pattern {ValidationConfig.PROPERTY_NAME_REGEX}'}), 400
    if len(name) > ValidationConfig.PROPERTY_NAME_MAX_LENGTH:
        return jsonify({'error': f'Property name max length is {ValidationConfig.PROPERTY_NAME_MAX_LENGTH}'}), 400
    error = _validate_numbers(data)
    if error:
        return jsonify({'error': error}), 400
    if _name_taken(name):
        return jsonify({'error': 'Property name must be unique'}), 400
    prop = Property(
        name=name,
        address=data.get('address'),
        capacity=data.get('capacity'),
        total_area=float(data['total_area']) if data.get('total_area') is not None else None
    )
    db.session.add(prop)
    db.session.commit()
    return jsonify(prop.to_dict()), 201

@properties_bp.route('/properties', methods=['GET'])
def get_properties():
    props = Property.query.order_by(Property.id).all()
    return jsonify([p.to_dict() for p in props]), 200

@properties_bp.route('/properties/<int:id>', methods=['GET'])
def get_property(id):
    prop = db.session.get(Property, id)
    if not prop:
        return jsonify({'error': 'Property not found'}), 404
    return jsonify(prop.to_dict()), 200

@properties_bp.route('/properties/<int:id>', methods=['PATCH'])
def update_property(id):
    data = request.json
    prop = db.session.get(Property, id)
    if not prop:
        return jsonify({'error': 'Property not found'}), 404
    if not data:
        return jsonify({'error': 'Request body is required'}), 400
    error = _validate_numbers(data)
    if error:
        return jsonify({'error': error}), 400
    if 'name' in data:
        name = str(data['name'] or '').strip()
        if not name or not re.match(ValidationConfig.PROPERTY_NAME_REGEX, name):
            return jsonify({'error': f'Property name must match pattern {ValidationConfig.PROPERTY_NAME_REGEX}'}), 400
        if _name_taken(name, exclude_id=id):
            return jsonify({'error': 'Property name must be unique'}), 400
        prop.name = name
    if 'address' in data:
        prop.address = data['address']
    if 'capacity' in data:
        prop.capacity = data['capacity']
    area_changed = 'total_area' in data and data['total_area'] != prop.total_area
    if 'total_area' in data:
        prop.total_area = float(data['total_area']) if data['total_area'] is not None else None
    db.session.commit()
    # total_area feeds the per-area fallback
    if area_changed:
        reallocate_property(prop.id)
    return jsonify(prop.to_dict()), 200

@properties_bp.route('/properties/<int:id>', methods=['DELETE'])
def delete_property(id):
    prop = db.session.get(Property, id)
    if not prop:
        return jsonify({'error': 'Property not found'}), 404
    # Finalized billing is permanent; the occupancy log is kept either way
    if prop.billing_periods.filter_by(status=PERIOD_FINALIZED).first():
        raise PeriodFinalizedError(f"Property {id} has finalized billing periods", property_id=id)
    db.session.delete(prop)
    db.session.commit()
    return '', 204
