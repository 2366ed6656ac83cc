# -*- coding: utf-8 -*-
"""
================================================================================
Trip Workflow (V1 - Sequential)
================================================================================
Purpose:
----------------
This module moves totes and oLPNs (outbound license plate numbers) through
the Chorus trip API. Each work item says "tote X now carries oLPN Y, as of
time T". To record that, any trip the tote is still carrying must be closed
before the new one is opened.

Key Steps (per work item, strictly in this order):
1.  **List Trips**: find every trip currently IN_TRANSIT under the tote.
2.  **Close Existing Trips**: for each of them, mark the trip COMPLETED and
    then end the tote's tracking of it. If completing a trip fails, ending its
    tracking is skipped and the next existing trip is processed.
3.  **Gate**: if closing any existing trip failed, the work item stops here.
4.  **Create Trip** for the new oLPN.
5.  **Start Tracking** the new oLPN on the tote.
6.  **Update Trip Status** of the new oLPN to IN_TRANSIT.

Any failed step stops the current work item and the workflow moves on to the
next one. Work items are processed one at a time in ascending event time
order, with a short pause after each successful update so the carrier system
has caught up before the next call reads from it.

Every failure is written to the error log exactly once: failed API calls are
written by the API client, and this module only writes the failures that the
client has not already recorded.
----------------
"""

# =====================================================================================
# --- Imports ---
# =====================================================================================
import time
import logging
from datetime import datetime, timezone

from common.errors import ConfigurationError, ErrorKind, RemoteApiError, ValidationError, WorkflowError
from common.utils import get_setting
from trip_tracking.models import ErrorRecord, ItemOutcome, RunSummary, StepResult, WorkflowResult
from trip_tracking.sequencer import format_event_time, sort_work_items

logger = logging.getLogger(__name__)


# =====================================================================================
# --- Configuration ---
# =====================================================================================
WORKFLOW_NAME = 'Trip Workflow'

# Step names, as written to the error log and the run log.
STEP_LIST = 'List Trips In Transit'
STEP_EXISTING = 'Process Existing Trip'
STEP_CREATE = 'Create New Trip'
STEP_START_TRACKING = 'Start Tracking'
STEP_UPDATE_STATUS = 'Update Trip Status'
STEP_GATE = 'Existing Trip Gate'
STEP_ITEM = 'Process Trip Data'
STEP_WORKFLOW = 'Workflow Execution'


class TripWorkflow:
    """Runs the trip workflow for a batch of work items."""

    def __init__(self, trip_api, error_sink, settle_delay=None, sleep=time.sleep, clock=time.monotonic):
        self.trip_api = trip_api
        self.error_sink = error_sink
        # Seconds to pause after each successful update call. Tests use 0.
        self.settle_delay = settle_delay if settle_delay is not None else get_setting(
            'TRIP_SETTLE_DELAY_SECONDS', cast=float)
        self._sleep = sleep
        self._clock = clock

    # =====================================================================================
    # --- Error logging ---
    # =====================================================================================

    def log_workflow_error(self, error, step, container_id=None, item_id=None, request_payload=None):
        """
        Writes a WORKFLOW_ERROR record for a failed step, unless the error is a
        `RemoteApiError` the API client has already written.
        """
        if isinstance(error, RemoteApiError) and error.logged:
            logger.info(f"Skipping duplicate error log for {error.endpoint} (already logged)")
            return None

        logger.info(f"Logging workflow error - tote: {container_id!r}, oLPN: {item_id!r}, step: {step!r}")
        is_api_error = isinstance(error, RemoteApiError)
        record = ErrorRecord(
            endpoint=error.endpoint if is_api_error else 'workflow',
            error_kind=ErrorKind.WORKFLOW_ERROR,
            status_code=error.status_code if is_api_error else 0,
            message=str(error) or 'Unknown workflow error',
            request_payload=error.request_payload if is_api_error else request_payload,
            container_id=(error.container_id or container_id) if is_api_error else container_id,
            item_id=(error.item_id or item_id) if is_api_error else item_id,
            step=step,
        )
        try:
            return self.error_sink.append(record)
        except Exception as e:
            logger.error(f"Failed to log workflow error to database: {e}")
            return None

    def _settle(self):
        if self.settle_delay > 0:
            self._sleep(self.settle_delay)

    # =====================================================================================
    # --- Per work item processing ---
    # =====================================================================================

    def _note(self, outcome, message, level=logging.INFO):
        logger.log(level, message)
        outcome.log.append(message)

    def _fail_step(self, outcome, step, error, message, **log_context):
        """Records one failed step: run log, error count and error log."""
        self._note(outcome, f"  ERROR: {message}: {error}", logging.ERROR)
        kind = error.error_kind if isinstance(error, RemoteApiError) else ErrorKind.WORKFLOW_ERROR
        outcome.steps.append(StepResult(step, False, kind))
        outcome.errors += 1
        self.log_workflow_error(error, step, **log_context)

    def _finish(self, outcome, started, failed_step=None, reason=''):
        outcome.failed_step = failed_step
        duration_ms = (self._clock() - started) * 1000
        item = outcome.work_item
        suffix = f" - {reason}" if reason else ''
        self._note(outcome, f"[TIMING] Completed processing for {item.container_id}/{item.item_id} "
                            f"in {duration_ms:.0f}ms ({outcome.errors} errors){suffix}")
        return outcome

    def _process_item(self, outcome, index, total):
        item = outcome.work_item
        container_id, item_id = item.container_id, item.item_id
        timestamp = format_event_time(item.event_time)
        started = self._clock()

        self._note(outcome, f"[TIMING] Starting processing for pair {index + 1}/{total}: "
                            f"{container_id}/{item_id} at {datetime.now(timezone.utc).isoformat()}")
        self._note(outcome, f"Processing trip data {index + 1}/{total}: {container_id}/{item_id}")

        # -------------------------------------------------------------
        # Step 1: List the trips already in transit on this tote.
        # -------------------------------------------------------------
        self._note(outcome, f"Step 1 - Listing trips in transit for {container_id}...")
        try:
            listing = self.trip_api.list_trips_in_transit(container_id)
        except ConfigurationError:
            raise
        except Exception as e:
            self._fail_step(outcome, STEP_LIST, e, f"Failed to list trips in transit for {container_id}",
                            container_id=container_id, item_id=item_id,
                            request_payload={'containerId': container_id})
            return self._finish(outcome, started, STEP_LIST, 'Failed at listing trips')
        outcome.steps.append(StepResult(STEP_LIST, True))
        self._note(outcome, f"Found {len(listing.trips)} existing trips in transit for {container_id}")

        # -------------------------------------------------------------
        # Step 2: Close every existing trip, in the order listed.
        # -------------------------------------------------------------
        existing_trips_failed = False
        if listing.trips:
            self._note(outcome, f"Step 2 - Processing {len(listing.trips)} existing trips...")
            for position, trip in enumerate(listing.trips, start=1):
                context = {
                    'container_id': trip.container_id,
                    'item_id': trip.item_id,
                    'request_payload': {'oldItemId': trip.item_id, 'containerId': trip.container_id,
                                        'timestamp': timestamp},
                }
                self._note(outcome, f"Processing existing trip {position}/{len(listing.trips)}: {trip.item_id}")
                try:
                    self.trip_api.end_trip(trip.item_id, timestamp)
                except ConfigurationError:
                    raise
                except Exception as e:
                    existing_trips_failed = True
                    self._fail_step(outcome, STEP_EXISTING, e,
                                    f"Failed to update trip status to COMPLETED for {trip.item_id}", **context)
                    # Ending tracking of a trip that is not completed is pointless; next trip.
                    continue
                self._note(outcome, f"    Trip status updated to COMPLETED for {trip.item_id}")
                self._settle()

                try:
                    self.trip_api.end_tracking(trip.container_id, trip.item_id)
                except ConfigurationError:
                    raise
                except Exception as e:
                    existing_trips_failed = True
                    self._fail_step(outcome, STEP_EXISTING, e,
                                    f"Failed to end tracking for {trip.container_id}/{trip.item_id}", **context)
                    continue
                self._note(outcome, f"    Tracking ended successfully for {trip.container_id}/{trip.item_id}")
                self._settle()
            outcome.steps.append(StepResult(STEP_EXISTING, not existing_trips_failed))
        else:
            self._note(outcome, f"  No existing trips found for {container_id}")

        # -------------------------------------------------------------
        # Step 3: Gate. Never open a new trip over one that is still open.
        # -------------------------------------------------------------
        if existing_trips_failed:
            self._note(outcome, f"Step 4 - Skipping new trip creation for {item_id} "
                                f"due to existing trip processing failures")
            return self._finish(outcome, started, STEP_GATE, 'Skipped due to existing trip failures')

        # -------------------------------------------------------------
        # Steps 4-6: Create, track and dispatch the new trip.
        # -------------------------------------------------------------
        new_trip_steps = (
            (STEP_CREATE, f"Step 4 - Creating new trip with {item_id}",
             lambda: self.trip_api.create_trip(item_id, timestamp),
             f"Failed to create new trip for {item_id}", 'Failed at trip creation',
             {'itemId': item_id, 'timestamp': timestamp}),
            (STEP_START_TRACKING, f"Step 5 - Starting tracking for {container_id}/{item_id}",
             lambda: self.trip_api.start_tracking(container_id, item_id),
             f"Failed to start tracking for {container_id}/{item_id}", 'Failed at tracking',
             {'containerId': container_id, 'itemId': item_id}),
            (STEP_UPDATE_STATUS, f"Step 6 - Updating trip status to IN_TRANSIT for {item_id}",
             lambda: self.trip_api.update_trip_to_in_transit(item_id, timestamp),
             f"Failed to update trip status to IN_TRANSIT for {item_id}", 'Failed at status update',
             {'itemId': item_id, 'timestamp': timestamp}),
        )
        for step, announcement, action, failure, reason, request_payload in new_trip_steps:
            self._note(outcome, announcement)
            try:
                action()
            except ConfigurationError:
                raise
            except Exception as e:
                self._fail_step(outcome, step, e, failure, container_id=container_id, item_id=item_id,
                                request_payload=request_payload)
                self._note(outcome, f"  Skipping remaining steps for {container_id}/{item_id}")
                return self._finish(outcome, started, step, reason)
            outcome.steps.append(StepResult(step, True))
            self._note(outcome, f"  {step} succeeded for {container_id}/{item_id}")
            self._settle()

        return self._finish(outcome, started)

    # =====================================================================================
    # --- Batch entry point ---
    # =====================================================================================

    def submit_batch(self, items):
        """
        Runs the workflow for a batch of work items and waits for it to finish.

        Per-item and per-step failures never raise; they are counted in the
        returned summary.

        Args:
            items (list[WorkItem]): The batch, in any order.

        Returns:
            WorkflowResult: success flag, run log and summary counts.

        Raises:
            ValidationError: For an empty or malformed batch.
            ConfigurationError: If the API credentials turn out to be unusable.
        """
        run_started = self._clock()
        log = []
        summary = RunSummary(total_items=len(items) if items else 0)
        outcomes = []
        sorted_items = []

        try:
            sorted_items = sort_work_items(items)
            summary.total_items = len(sorted_items)
            logger.info(f"Starting '{WORKFLOW_NAME}' for {len(sorted_items)} trip data entries "
                        f"(sorted by timestamp).")

            for index, item in enumerate(sorted_items):
                progress = f"[PROGRESS] Processing data entry {index + 1}/{len(sorted_items)}"
                logger.info(progress)
                log.append(progress)

                outcome = ItemOutcome(work_item=item)
                try:
                    self._process_item(outcome, index, len(sorted_items))
                except ConfigurationError:
                    raise
                except Exception as e:
                    # Unexpected failure inside an item: count it once and carry on.
                    logger.exception(f"Failed to process trip data {item.container_id}/{item.item_id}")
                    outcome.log.append(f"ERROR: Failed to process trip data "
                                       f"{item.container_id}/{item.item_id}: {e}")
                    outcome.errors += 1
                    outcome.failed_step = STEP_ITEM
                    failure = WorkflowError(
                        f"Failed to process trip data {item.container_id}/{item.item_id}: {e}")
                    failure.__cause__ = e
                    self.log_workflow_error(failure, STEP_ITEM, container_id=item.container_id,
                                            item_id=item.item_id, request_payload=item.to_dict())

                outcomes.append(outcome)
                log.extend(outcome.log)
                summary.processed += 1 if outcome.processed else 0
                summary.errors += outcome.errors

                done = (f"[PROGRESS] Completed data entry {index + 1}/{len(sorted_items)} - "
                        f"Success: {str(outcome.processed).lower()}, Errors: {outcome.errors}")
                logger.info(done)
                log.append(done)

        except (ValidationError, ConfigurationError):
            raise
        except Exception as e:
            duration_ms = (self._clock() - run_started) * 1000
            logger.exception(f"'{WORKFLOW_NAME}' failed after {duration_ms:.0f}ms")
            log.append(f"[TIMING] '{WORKFLOW_NAME}' failed after {duration_ms:.0f}ms")
            log.append(f"CRITICAL ERROR: {e}")
            first = sorted_items[0] if sorted_items else None
            failure = WorkflowError(f"'{WORKFLOW_NAME}' failed: {e}")
            failure.__cause__ = e
            self.log_workflow_error(
                failure, STEP_WORKFLOW,
                container_id=first.container_id if first else None,
                item_id=first.item_id if first else None,
                request_payload={'items': [item.to_dict() for item in sorted_items]},
            )
            summary.errors += 1
            return WorkflowResult(success=False, summary=summary, log=log, outcomes=outcomes, error=str(e))

        duration_ms = (self._clock() - run_started) * 1000
        average_ms = duration_ms / len(sorted_items) if sorted_items else 0
        log.append(f"[TIMING] '{WORKFLOW_NAME}' completed in {duration_ms:.0f}ms")
        log.append(f"[TIMING] Average time per pair: {average_ms:.2f}ms")
        logger.info(f"'{WORKFLOW_NAME}' completed. Processed: {summary.processed}, Errors: {summary.errors}")

        return WorkflowResult(success=summary.success, summary=summary, log=log, outcomes=outcomes)


# =====================================================================================
# --- Factory ---
# =====================================================================================

def build_trip_workflow(error_sink=None, token_manager=None, settle_delay=None):
    """
    Wires a workflow from configuration: token manager, API client and the
    PostgreSQL error log.

    Raises:
        ConfigurationError: If the Chorus API credentials are missing.
    """
    # Imported here so the workflow can be used without the database module.
    from database.db_utils import ErrorLogSink
    from trip_tracking.api_client import ChorusApiClient
    from trip_tracking.token_manager import TokenManager
    from trip_tracking.trip_api import TripApi

    error_sink = error_sink or ErrorLogSink()
    token_manager = token_manager or TokenManager.from_config()
    client = ChorusApiClient(token_manager, error_sink)
    return TripWorkflow(TripApi(client), error_sink, settle_delay=settle_delay)
