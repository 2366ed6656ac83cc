# -*- coding: utf-8 -*-
"""
================================================================================
Trip Service Web Application
================================================================================
Purpose:
----------------
This script launches a Flask application that exposes the trip workflow over
HTTP. It provides three groups of JSON endpoints:

1.  **Batch processing** (`/api/trips/process-data`): runs the full trip
    workflow for a batch of tote/oLPN events and returns the run summary.
2.  **Manual operations** (`/api/trips/...`): one endpoint per Chorus API
    operation, for administrators fixing individual trips by hand.
3.  **Error logs** (`/api/error-logs/...`): browse, summarise and clean up the
    error log written by the workflow.

The workflow (and the token manager inside it) is created on first use and
kept for the lifetime of the process.
----------------
"""

# =====================================================================================
# --- Imports and Setup ---
# =====================================================================================
import os
import sys
import logging
import threading
from datetime import datetime, timezone

from flask import Flask, request, jsonify

# --- Project Path Setup ---
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from common.errors import ConfigurationError, RemoteApiError, ValidationError
from common.utils import get_setting, setup_logging
from database.db_utils import ErrorLogSink
from trip_tracking.models import WorkItem
from trip_tracking.workflow import build_trip_workflow

logger = logging.getLogger(__name__)

app = Flask(__name__)

# --- Lazily created service objects ---
_services = {}
_services_lock = threading.Lock()


def get_error_sink():
    with _services_lock:
        if 'error_sink' not in _services:
            _services['error_sink'] = ErrorLogSink()
        return _services['error_sink']


def get_workflow():
    """Returns the process-wide workflow, building it on first use."""
    sink = get_error_sink()
    with _services_lock:
        if 'workflow' not in _services:
            _services['workflow'] = build_trip_workflow(error_sink=sink)
        return _services['workflow']


def _now_iso():
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def _remote_error_response(action, error):
    return jsonify({"success": False, "error": f"Failed to {action}: {error}",
                    "statusCode": error.status_code, "errorType": error.error_kind.value}), 502


@app.errorhandler(ConfigurationError)
def handle_configuration_error(error):
    logger.error(f"Service is not configured: {error}")
    return jsonify({"success": False, "error": str(error)}), 503


# =====================================================================================
# --- Batch processing ---
# =====================================================================================

@app.route('/api/trips/process-data', methods=['POST'])
def process_data():
    """
    Runs the trip workflow for `{"items": [{containerId, itemId, eventTime}, ...]}`
    and returns the result once the whole batch has been processed.
    """
    data = request.get_json(silent=True) or {}
    raw_items = data.get('items')
    if not isinstance(raw_items, list) or not raw_items:
        return jsonify({"success": False, "error": "Invalid request: items must be a non-empty array"}), 400
    if not all(isinstance(entry, dict) for entry in raw_items):
        return jsonify({"success": False, "error": "Invalid request: every item must be an object"}), 400

    items = [WorkItem.from_dict(entry) for entry in raw_items]
    try:
        result = get_workflow().submit_batch(items)
    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    return jsonify(result.to_dict()), 200


# =====================================================================================
# --- Manual operations ---
# =====================================================================================

@app.route('/api/trips/create-trip', methods=['POST'])
def create_trip():
    body = request.get_json(silent=True) or {}
    if not body.get('itemId'):
        return jsonify({"success": False, "error": "itemId is required"}), 400
    try:
        result = get_workflow().trip_api.create_trip(body['itemId'], body.get('timestamp') or _now_iso())
    except RemoteApiError as e:
        return _remote_error_response('create trip', e)
    return jsonify({"success": True, "result": result}), 200


@app.route('/api/trips/start-tracking', methods=['POST'])
def start_tracking():
    body = request.get_json(silent=True) or {}
    if not body.get('containerId') or not body.get('itemId'):
        return jsonify({"success": False, "error": "containerId and itemId are required"}), 400
    try:
        result = get_workflow().trip_api.start_tracking(body['containerId'], body['itemId'])
    except RemoteApiError as e:
        return _remote_error_response('start tracking', e)
    return jsonify({"success": True, "result": result}), 200


@app.route('/api/trips/update-trip-in-transit', methods=['POST'])
def update_trip_in_transit():
    body = request.get_json(silent=True) or {}
    if not body.get('itemId'):
        return jsonify({"success": False, "error": "itemId is required"}), 400
    try:
        result = get_workflow().trip_api.update_trip_to_in_transit(
            body['itemId'], body.get('timestamp') or _now_iso())
    except RemoteApiError as e:
        return _remote_error_response('update trip to IN_TRANSIT', e)
    return jsonify({"success": True, "result": result}), 200


@app.route('/api/trips/end-trip', methods=['POST'])
def end_trip():
    body = request.get_json(silent=True) or {}
    if not body.get('itemId'):
        return jsonify({"success": False, "error": "itemId is required"}), 400
    try:
        result = get_workflow().trip_api.end_trip(body['itemId'], body.get('timestamp') or _now_iso())
    except RemoteApiError as e:
        return _remote_error_response('end trip', e)
    return jsonify({"success": True, "result": result}), 200


@app.route('/api/trips/end-tracking', methods=['POST'])
def end_tracking():
    body = request.get_json(silent=True) or {}
    if not body.get('containerId') or not body.get('itemId'):
        return jsonify({"success": False, "error": "containerId and itemId are required"}), 400
    try:
        result = get_workflow().trip_api.end_tracking(body['containerId'], body['itemId'])
    except RemoteApiError as e:
        return _remote_error_response('end tracking', e)
    return jsonify({"success": True, "result": result}), 200


@app.route('/api/trips/in-transit', methods=['GET'])
def list_trips_in_transit():
    container_id = request.args.get('containerId')
    if not container_id:
        return jsonify({"success": False, "error": "containerId is required"}), 400
    try:
        listing = get_workflow().trip_api.list_trips_in_transit(container_id)
    except RemoteApiError as e:
        return _remote_error_response('list trips in transit', e)
    return jsonify({"success": True, "result": {
        "itemIds": listing.item_ids,
        "pairs": [list(pair) for pair in listing.pairs],
        "raw": listing.raw,
    }}), 200


# =====================================================================================
# --- Error logs ---
# =====================================================================================

@app.route('/api/error-logs', methods=['GET'])
def get_error_logs():
    try:
        page = int(request.args.get('page', 1))
        limit = int(request.args.get('limit', 50))
    except ValueError:
        return jsonify({"error": "page and limit must be integers"}), 400

    filters = {
        'error_type': request.args.get('errorType'),
        'endpoint': request.args.get('endpoint'),
        'container_id': request.args.get('containerId'),
        'item_id': request.args.get('itemId'),
        'start_date': request.args.get('startDate'),
        'end_date': request.args.get('endDate'),
    }
    filters = {key: value for key, value in filters.items() if value}
    logs, total = get_error_sink().query(filters, page, limit)
    return jsonify({"logs": logs, "total": total, "page": page, "limit": limit}), 200


@app.route('/api/error-logs/stats', methods=['GET'])
def get_error_stats():
    return jsonify(get_error_sink().stats()), 200


@app.route('/api/error-logs/workflow', methods=['GET'])
def get_workflow_error_logs():
    return jsonify(get_error_sink().find_workflow_errors()), 200


@app.route('/api/error-logs/<int:log_id>', methods=['GET'])
def get_error_log(log_id):
    error_log = get_error_sink().find_by_id(log_id)
    if not error_log:
        return jsonify({"error": "Error log not found"}), 404
    return jsonify(error_log), 200


@app.route('/api/error-logs/container/<container_id>', methods=['GET'])
def get_error_logs_by_container(container_id):
    return jsonify(get_error_sink().find_by_container(container_id)), 200


@app.route('/api/error-logs/item/<item_id>', methods=['GET'])
def get_error_logs_by_item(item_id):
    return jsonify(get_error_sink().find_by_item(item_id)), 200


@app.route('/api/error-logs/cleanup', methods=['DELETE'])
def cleanup_error_logs():
    try:
        days_old = int(request.args.get('daysOld', 30))
    except ValueError:
        return jsonify({"error": "daysOld must be an integer"}), 400
    deleted_count = get_error_sink().delete_older_than(days_old)
    return jsonify({"message": f"Deleted {deleted_count} old error logs", "deletedCount": deleted_count}), 200


# =====================================================================================
# --- Direct Execution (for development) ---
# =====================================================================================
if __name__ == '__main__':
    setup_logging('trip_service')
    app.run(host='0.0.0.0', port=get_setting('TRIP_SERVICE_PORT', cast=int))
