#!/usr/bin/env python3

"""
Main entry point for the Trip Workflow.

Loads a batch of tote/oLPN events from a CSV or JSON file, runs it through
the trip workflow and writes the run log to the `data/` directory.

Usage:
    python main_trip_workflow.py batch.csv [--start-time 2025-01-01T00:00:00Z] [--interval 1]

The core logic is located in the `trip_tracking.workflow` module.
"""

import os
import sys
import argparse
from datetime import datetime

# Ensure the project root is in the Python path
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, PROJECT_ROOT)

from common.errors import ConfigurationError, ValidationError
from common.utils import setup_logging
from trip_tracking.batch_loader import load_work_items
from trip_tracking.workflow import build_trip_workflow

DATA_DIR = os.path.join(PROJECT_ROOT, 'data')


def write_run_log(result):
    """Writes the run log and summary to a timestamped file and returns its path."""
    os.makedirs(DATA_DIR, exist_ok=True)
    log_path = os.path.join(DATA_DIR, datetime.now().strftime("trip-workflow-%Y-%m-%dT%H-%M-%S.txt"))
    with open(log_path, 'w') as f:
        f.write(result.data)
        f.write(f"\n\nSummary: {result.summary.to_dict()}\n")
    return log_path


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run the trip workflow for a batch file.")
    parser.add_argument('batch_file', help='CSV or JSON file with tote/oLPN events.')
    parser.add_argument('--start-time', help='First event time for rows without one (ISO 8601).')
    parser.add_argument('--interval', type=float, default=1,
                        help='Seconds between generated event times (default: 1).')
    args = parser.parse_args(argv)

    setup_logging('trip_workflow')
    print("\n--- Starting Trip Workflow ---")
    try:
        items = load_work_items(args.batch_file, start_time=args.start_time, interval_seconds=args.interval)
        result = build_trip_workflow().submit_batch(items)
    except (ValidationError, ConfigurationError, FileNotFoundError) as e:
        print(f"CRITICAL: {e}")
        return 1

    log_path = write_run_log(result)
    summary = result.summary
    print(f"INFO: Processed {summary.processed}/{summary.total_items} items with {summary.errors} errors.")
    print(f"INFO: Run log written to {log_path}")
    print("\n--- Trip Workflow Finished ---")
    return 0 if result.success else 2


if __name__ == '__main__':
    sys.exit(main())
