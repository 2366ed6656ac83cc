# -*- coding: utf-8 -*-
"""
Data shapes passed between the token manager, the API client and the trip
workflow. None of these are persisted directly; only `ErrorRecord` ends up
in the database, through the error log sink.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, List, Optional, Tuple

from common.errors import ErrorKind


@dataclass(frozen=True)
class WorkItem:
    """One tote/oLPN handoff event to reconcile with the carrier API."""
    container_id: str
    item_id: str
    event_time: Any

    @classmethod
    def from_dict(cls, data):
        """Builds a work item from the camelCase JSON shape used by the front door."""
        return cls(
            container_id=data.get('containerId'),
            item_id=data.get('itemId'),
            event_time=data.get('eventTime'),
        )

    def to_dict(self):
        event_time = self.event_time
        if hasattr(event_time, 'isoformat'):
            event_time = event_time.isoformat()
        return {'containerId': self.container_id, 'itemId': self.item_id, 'eventTime': event_time}


@dataclass
class Credential:
    """A signed bearer token and its validity window (epoch seconds)."""
    token: str
    issued_at: float
    expires_at: float


@dataclass(frozen=True)
class ErrorRecord:
    endpoint: str
    error_kind: ErrorKind
    status_code: int
    message: str
    request_payload: Optional[Any] = None
    container_id: Optional[str] = None
    item_id: Optional[str] = None
    step: Optional[str] = None


@dataclass(frozen=True)
class ExistingTrip:
    """A trip already IN_TRANSIT under a container when a new item arrives."""
    container_id: str
    item_id: str


@dataclass
class InTransitListing:
    container_id: str
    trips: List[ExistingTrip]
    raw: Any = None

    @property
    def item_ids(self):
        return [trip.item_id for trip in self.trips]

    @property
    def pairs(self) -> List[Tuple[str, str]]:
        return [(trip.container_id, trip.item_id) for trip in self.trips]


@dataclass(frozen=True)
class StepResult:
    step_name: str
    success: bool
    error_kind: Optional[ErrorKind] = None


@dataclass
class ItemOutcome:
    """What happened to a single work item during a run."""
    work_item: WorkItem
    steps: List[StepResult] = field(default_factory=list)
    errors: int = 0
    failed_step: Optional[str] = None
    log: List[str] = field(default_factory=list)

    @property
    def processed(self):
        return self.failed_step is None and self.errors == 0


@dataclass
class RunSummary:
    total_items: int = 0
    processed: int = 0
    errors: int = 0

    @property
    def success(self):
        return self.errors == 0

    def to_dict(self):
        return {'totalItems': self.total_items, 'processed': self.processed, 'errors': self.errors}


@dataclass
class WorkflowResult:
    success: bool
    summary: RunSummary
    log: List[str] = field(default_factory=list)
    outcomes: List[ItemOutcome] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def data(self):
        """The run log as a single newline separated string."""
        return '\n'.join(self.log)

    def to_dict(self):
        result = {
            'success': self.success,
            'data': self.data,
            'summary': self.summary.to_dict(),
        }
        if self.error:
            result['error'] = self.error
        return result


def error_record_to_row(record):
    """Flattens an `ErrorRecord` into the column values of `trip_error_logs`."""
    row = asdict(record)
    row['error_kind'] = ErrorKind(record.error_kind).value
    return row
