# -*- coding: utf-8 -*-
"""
Loads a batch of work items from a file exported by the warehouse system.

Two formats are accepted:
- CSV with a tote column ("containerId" or any header containing "tote" and
  "id"), an oLPN column ("itemId" or any header containing "olpn") and an
  optional time column ("eventTime" or "timestamp").
- JSON: a list of `{containerId, itemId, eventTime}` objects, or an object
  with such a list under "items".

When the file has no time column, event times are generated in increasing
order so the batch is processed in file order.
"""

import os
import json
import logging
from datetime import datetime, timedelta, timezone

import pandas as pd

from common.errors import ValidationError
from trip_tracking.models import WorkItem
from trip_tracking.sequencer import format_event_time, parse_event_time

logger = logging.getLogger(__name__)


def _find_column(columns, exact, predicate):
    for column in columns:
        if str(column).strip().lower() == exact.lower():
            return column
    for column in columns:
        if predicate(str(column).strip().lower()):
            return column
    return None


def _clean(value):
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ''
    return str(value).strip()


def read_csv_rows(path):
    """Reads (container_id, item_id, event_time or None) rows from a CSV file."""
    df = pd.read_csv(path, dtype=str)
    logger.info(f"Headers found: {', '.join(str(c) for c in df.columns)}")

    container_col = _find_column(df.columns, 'containerId', lambda h: 'tote' in h and 'id' in h)
    item_col = _find_column(df.columns, 'itemId', lambda h: 'olpn' in h)
    time_col = _find_column(df.columns, 'eventTime', lambda h: h == 'timestamp')
    if container_col is None:
        raise ValidationError('Column "Tote Id" (or "containerId") not found in file')
    if item_col is None:
        raise ValidationError('Column "OLPN" (or "itemId") not found in file')

    rows = []
    for index, record in df.iterrows():
        container_id = _clean(record[container_col])
        item_id = _clean(record[item_col])
        if not container_id or not item_id:
            # +2: one for the header row, one for 1-based numbering.
            logger.info(f"Skipping row {index + 2}: empty tote id or oLPN")
            continue
        event_time = _clean(record[time_col]) if time_col is not None else ''
        rows.append((container_id, item_id, event_time or None))
    return rows


def read_json_rows(path):
    with open(path, 'r') as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get('items') or []
    rows = []
    for entry in data:
        container_id = _clean(entry.get('containerId'))
        item_id = _clean(entry.get('itemId'))
        if not container_id or not item_id:
            continue
        rows.append((container_id, item_id, entry.get('eventTime')))
    return rows


def load_work_items(path, start_time=None, interval_seconds=1):
    """
    Loads a batch of work items from `path`.

    Args:
        path (str): A .csv or .json file.
        start_time (str | datetime | None): First generated event time for rows
            without one (default: now).
        interval_seconds (float): Gap between generated event times.

    Returns:
        list[WorkItem]

    Raises:
        ValidationError: For an unsupported file type or a file with no usable rows.
    """
    extension = os.path.splitext(path)[1].lower()
    if extension == '.csv':
        rows = read_csv_rows(path)
    elif extension == '.json':
        rows = read_json_rows(path)
    else:
        raise ValidationError(f"Unsupported batch file type: {extension or path}")

    if not rows:
        raise ValidationError(f"No valid data rows found in {path}")

    current = parse_event_time(start_time) if start_time else datetime.now(timezone.utc)
    step = timedelta(seconds=interval_seconds)
    items = []
    for container_id, item_id, event_time in rows:
        if not event_time:
            event_time = format_event_time(current)
            current += step
        items.append(WorkItem(container_id=container_id, item_id=item_id, event_time=event_time))

    logger.info(f"Successfully read {len(items)} work items from {path}")
    return items
