from flask import Blueprint, request, jsonify
from ..config import BillingConfig
from ..models import EVENT_TYPES
from ..services import occupancy_log
from ..services.tenancies import get_tenancy
from datetime import date

occupancy_bp = Blueprint('occupancy', __name__)

@occupancy_bp.route('/tenancies/<int:id>/history', methods=['GET'])
def tenancy_history(id):
    """Events in recorded order; pass the last seen id as after_id to resume."""
    get_tenancy(id)
    try:
        after_id = int(request.args['after_id']) if request.args.get('after_id') else None
        limit = int(request.args.get('limit', BillingConfig.OCCUPANCY_HISTORY_LIMIT))
    except ValueError:
        return jsonify({'error': 'after_id and limit must be integers'}), 400
    events = occupancy_log.history_for(id, after_id=after_id, limit=limit)
    return jsonify([e.to_dict() for e in events]), 200

@occupancy_bp.route('/properties/<int:property_id>/occupancy/history', methods=['GET'])
def property_history(property_id):
    event_type = request.args.get('event_type')
    if event_type and event_type not in EVENT_TYPES:
        return jsonify({'error': f"event_type must be one of {', '.join(EVENT_TYPES)}"}), 400
    try:
        start_date = date.fromisoformat(request.args['start_date']) if request.args.get('start_date') else None
        end_date = date.fromisoformat(request.args['end_date']) if request.args.get('end_date') else None
        limit = int(request.args.get('limit', BillingConfig.OCCUPANCY_HISTORY_LIMIT))
    except ValueError:
        return jsonify({'error': 'Invalid date format. Use YYYY-MM-DD for dates and integer for limit'}), 400
    if start_date and end_date and end_date < start_date:
        return jsonify({'error': 'End date must be on or after start date.'}), 400
    events = occupancy_log.history_for_property(property_id, event_type=event_type,
                                                start_date=start_date, end_date=end_date, limit=limit)
    return jsonify([e.to_dict() for e in events]), 200

@occupancy_bp.route('/properties/<int:property_id>/occupancy/statistics', methods=['GET'])
def property_statistics(property_id):
    year = request.args.get('year')
    month = request.args.get('month')
    if not year:
        return jsonify({'error': 'year is required'}), 400
    try:
        year = int(year)
        month = int(month) if month else None
    except ValueError:
        return jsonify({'error': 'Invalid year/month'}), 400
    return jsonify(occupancy_log.statistics_for(property_id, year, month=month)), 200
