from flask import Blueprint, request, jsonify, Response
from ..services.billing import preview_statements
from ..services.kpis import move_in_out_counts, occupancy_rate_for_month
from datetime import date
import csv
import io

reports_bp = Blueprint('reports', __name__)

STATEMENT_CSV_FIELDS = ['tenancy_id', 'occupied_days', 'days_in_month', 'rent',
                        'utility_month', 'utilities', 'utilities_prorated', 'total_due']


def _statement_rows(result):
    for s in result.statements:
        data = s.to_dict()
        yield {
            'tenancy_id': data['tenancy_id'],
            'occupied_days': data['rent_line']['occupied_days'],
            'days_in_month': data['rent_line']['days_in_month'],
            'rent': data['rent_line']['billable_amount'],
            'utility_month': f"{data['utility_period']['year']:04d}-{data['utility_period']['month']:02d}",
            'utilities': data['total_utilities'],
            'utilities_prorated': data['utilities_prorated'],
            'total_due': data['total_due'],
        }


# Statement summary for a property month, as JSON rows or CSV
@reports_bp.route('/reports/statements', methods=['GET'])
def get_statement_report():
    property_id = request.args.get('property_id')
    year = request.args.get('year')
    month = request.args.get('month')
    if not all([property_id, year, month]):
        return jsonify({'error': 'property_id, year, and month are required'}), 400
    try:
        prop_id = int(property_id)
        year = int(year)
        month = int(month)
    except (ValueError, TypeError):
        return jsonify({'error': 'Invalid year/month/property_id'}), 400
    result = preview_statements(prop_id, month, year)
    rows = list(_statement_rows(result))
    if request.args.get('format') == 'csv':
        output = io.StringIO()
        writer = csv.DictWriter(output, fieldnames=STATEMENT_CSV_FIELDS)
        writer.writeheader()
        writer.writerows(rows)
        csv_data = output.getvalue()
        output.close()
        headers = {
            'Content-Type': 'text/csv',
            'Content-Disposition': f'attachment; filename="statements_{prop_id}_{year:04d}_{month:02d}.csv"'
        }
        return Response(csv_data, headers=headers)
    return jsonify(rows), 200


# Move-in/out counts for a date range
@reports_bp.route('/reports/kpi-move', methods=['GET'])
def get_kpi_move():
    start_date = request.args.get('start_date')
    end_date = request.args.get('end_date')
    property_id = request.args.get('property_id')
    if not all([start_date, end_date, property_id]):
        return jsonify({'error': 'start_date, end_date, and property_id are required'}), 400
    try:
        start_dt = date.fromisoformat(start_date)
        end_dt = date.fromisoformat(end_date)
        prop_id = int(property_id)
    except (ValueError, TypeError):
        return jsonify({'error': 'Invalid date format. Use YYYY-MM-DD for dates and integer for property_id'}), 400
    if end_dt < start_dt:
        return jsonify({'error': 'End date must be on or after start date.'}), 400
    result = move_in_out_counts(prop_id, start_dt, end_dt)
    return jsonify(result), 200

# Occupancy rate for a given month
@reports_bp.route('/reports/kpi-occupancy', methods=['GET'])
def get_kpi_occupancy():
    property_id = request.args.get('property_id')
    year = request.args.get('year')
    month = request.args.get('month')
    if not all([property_id, year, month]):
        return jsonify({'error': 'property_id, year, and month are required'}), 400
    try:
        prop_id = int(property_id)
        year = int(year)
        month = int(month)
    except (ValueError, TypeError):
        return jsonify({'error': 'Invalid year/month/property_id'}), 400
    result = occupancy_rate_for_month(prop_id, year, month)
    return jsonify(result), 200
