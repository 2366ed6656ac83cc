# -*- coding: utf-8 -*-
"""
Batch sequencing: validates a submitted batch and orders it by event time.

Timestamps may arrive as ISO 8601 strings (with `Z`, an offset, or no offset,
in which case UTC is assumed) or as `datetime` objects. The sorted batch
carries timezone-aware `datetime` values.
"""

from dataclasses import replace
from datetime import datetime, timezone

import pandas as pd

from common.errors import ValidationError
from trip_tracking.models import WorkItem


def parse_event_time(value):
    """
    Parses an event time into an aware UTC `datetime`.

    Raises:
        ValidationError: If the value is not a parseable instant.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            timestamp = pd.Timestamp(value.strip())
        except (ValueError, TypeError):
            raise ValidationError(f"Invalid timestamp format: {value}")
        if pd.isna(timestamp):
            raise ValidationError(f"Invalid timestamp format: {value}")
        parsed = timestamp.to_pydatetime()
    else:
        raise ValidationError(f"Invalid timestamp format: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_event_time(value):
    """Formats an event time the way the Chorus API expects (`...T00:00:01.000Z`)."""
    if value is None:
        return None
    return parse_event_time(value).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def validate_work_item(item, index):
    if not isinstance(item, WorkItem):
        raise ValidationError(f"Invalid trip data at index {index}: expected a work item")
    if not item.container_id or not item.item_id or item.event_time in (None, ''):
        raise ValidationError(
            f"Invalid trip data at index {index}: containerId, itemId, and eventTime are required")


def sort_work_items(items):
    """
    Returns a new list of the work items in ascending event time order.

    The sort is stable, so items sharing a timestamp keep their submission
    order. The input list is not modified.

    Raises:
        ValidationError: For an empty batch, a missing field or an unparseable time.
    """
    if not items:
        raise ValidationError("Invalid request: the batch must contain at least one work item")

    normalised = []
    for index, item in enumerate(items):
        validate_work_item(item, index)
        try:
            event_time = parse_event_time(item.event_time)
        except ValidationError as e:
            raise ValidationError(f"Invalid timestamp format at index {index}: {item.event_time}") from e
        normalised.append(replace(item, event_time=event_time))

    return sorted(normalised, key=lambda work_item: work_item.event_time)
