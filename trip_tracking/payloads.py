# -*- coding: utf-8 -*-
"""
Request builders for the six Chorus trip API operations.

Each builder returns an `ApiRequest` that carries the endpoint and JSON body
together with the tote (container) and oLPN (item) it concerns, so a failed
call can be written to the error log with both identifiers without digging
through the payload.
"""

from dataclasses import dataclass
from typing import Any, Optional

# --- Endpoints (relative to the API base URL) ---
LIST_TRIPS_ENDPOINT = 'v1alpha1/trips:list'
UPDATE_STAGE_ENDPOINT = 'v1alpha1/trips:updateStage'
END_TRACKING_ENDPOINT = 'v1alpha1/trackings:end'
CREATE_TRIP_ENDPOINT = 'v1alpha1/trips'
START_TRACKING_ENDPOINT = 'v1alpha1/trackings:addTrip'

# --- Trip stages ---
STAGE_IN_TRANSIT = 'IN_TRANSIT'
STAGE_COMPLETED = 'COMPLETED'


@dataclass(frozen=True)
class ApiRequest:
    endpoint: str
    payload: Optional[Any] = None
    method: str = 'POST'
    container_id: Optional[str] = None
    item_id: Optional[str] = None


def list_in_transit_request(container_id):
    payload = {
        'tripStages': [STAGE_IN_TRANSIT],
        'assetIdentifier': {'customerId': container_id},
    }
    return ApiRequest(LIST_TRIPS_ENDPOINT, payload, container_id=container_id)


def _update_stage_request(item_id, new_stage, timestamp):
    payload = {
        'tripIdentifier': {'customerId': item_id},
        'newStage': new_stage,
    }
    if timestamp:
        payload['timestamp'] = timestamp
    return ApiRequest(UPDATE_STAGE_ENDPOINT, payload, item_id=item_id)


def complete_trip_request(item_id, timestamp=None):
    return _update_stage_request(item_id, STAGE_COMPLETED, timestamp)


def in_transit_request(item_id, timestamp=None):
    return _update_stage_request(item_id, STAGE_IN_TRANSIT, timestamp)


def _tracking_payload(container_id, item_id):
    return {
        'assetIdentifier': {'customerId': container_id},
        'tripIdentifier': {'customerId': item_id},
    }


def end_tracking_request(container_id, item_id):
    return ApiRequest(END_TRACKING_ENDPOINT, _tracking_payload(container_id, item_id),
                      container_id=container_id, item_id=item_id)


def start_tracking_request(container_id, item_id):
    return ApiRequest(START_TRACKING_ENDPOINT, _tracking_payload(container_id, item_id),
                      container_id=container_id, item_id=item_id)


def create_trip_request(item_id, timestamp=None):
    trip = {'customerId': item_id}
    if timestamp:
        trip['actualStartTime'] = timestamp
    return ApiRequest(CREATE_TRIP_ENDPOINT, {'trip': trip}, item_id=item_id)
