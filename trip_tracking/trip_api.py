# -*- coding: utf-8 -*-
"""
The six Chorus trip operations used by the trip workflow.

Each method is a thin wrapper over one `ChorusApiClient.send` call and keeps
its error behaviour: a failure raises the `RemoteApiError` produced by the
client, already written to the error log.
"""

import json
import logging

from trip_tracking import payloads
from trip_tracking.models import ExistingTrip, InTransitListing

logger = logging.getLogger(__name__)


class TripApi:

    def __init__(self, client):
        self.client = client

    def list_trips_in_transit(self, container_id):
        """
        Lists every trip currently IN_TRANSIT under a tote.

        Returns:
            InTransitListing: the (tote, oLPN) pairs in the order the API returned them.
        """
        data = self.client.send(payloads.list_in_transit_request(container_id))

        trips = []
        if isinstance(data, dict):
            for trip in data.get('trips') or []:
                customer_id = (trip or {}).get('customerId')
                # Trips without an oLPN cannot be completed or ended.
                if customer_id and str(customer_id).strip():
                    trips.append(ExistingTrip(container_id=container_id, item_id=customer_id))

        listing = InTransitListing(container_id=container_id, trips=trips, raw=data)
        logger.info(f"list_trips_in_transit for {container_id} - Found {len(trips)} trips: "
                    f"{json.dumps(listing.item_ids)}")
        return listing

    def end_trip(self, item_id, timestamp=None):
        """Moves a trip to COMPLETED."""
        return self.client.send(payloads.complete_trip_request(item_id, timestamp))

    def end_tracking(self, container_id, item_id):
        logger.info(f"Ending tracking for tote {container_id}, oLPN {item_id}")
        result = self.client.send(payloads.end_tracking_request(container_id, item_id))
        logger.info(f"Successfully ended tracking for {container_id}/{item_id}")
        return result

    def create_trip(self, item_id, timestamp=None):
        logger.info(f"Creating trip for oLPN {item_id}, timestamp: {timestamp or 'current time'}")
        result = self.client.send(payloads.create_trip_request(item_id, timestamp))
        logger.info(f"Successfully created trip for {item_id}")
        return result

    def start_tracking(self, container_id, item_id):
        logger.info(f"Starting tracking for tote {container_id}, oLPN {item_id}")
        result = self.client.send(payloads.start_tracking_request(container_id, item_id))
        logger.info(f"Successfully started tracking for {container_id}/{item_id}")
        return result

    def update_trip_to_in_transit(self, item_id, timestamp=None):
        logger.info(f"Updating trip to IN_TRANSIT for oLPN {item_id}, timestamp: {timestamp or 'current time'}")
        result = self.client.send(payloads.in_transit_request(item_id, timestamp))
        logger.info(f"Successfully updated trip to IN_TRANSIT for {item_id}")
        return result
