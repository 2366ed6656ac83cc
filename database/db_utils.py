import os
import json
import logging
import argparse
import psycopg2
from psycopg2 import extras

from trip_tracking.models import error_record_to_row

logger = logging.getLogger(__name__)

ERROR_LOG_COLUMNS = ("id, endpoint, error_type, status_code, error_message, request_payload, "
                     "container_id, item_id, step, timestamp, updated_at")


def get_db_connection():
    """
    Establishes and returns a connection to the PostgreSQL database.
    """
    try:
        conn = psycopg2.connect(
            dbname=os.getenv("POSTGRES_DB", "trip_tracking"),
            user=os.getenv("POSTGRES_USER", "user"),
            password=os.getenv("POSTGRES_PASSWORD", "password"),
            host=os.getenv("POSTGRES_HOST", "localhost"),
            port=os.getenv("POSTGRES_PORT", "5432")
        )
        return conn
    except psycopg2.OperationalError as e:
        logger.error(f"Could not connect to the database. Please ensure it is running. Details: {e}")
        return None


def initialize_database():
    """
    Initializes the database by executing the DDL statements in 'schema.sql'.
    """
    conn = None
    script_dir = os.path.dirname(os.path.abspath(__file__))
    schema_path = os.path.join(script_dir, 'schema.sql')
    try:
        logger.info(f"Reading database schema from {schema_path}...")
        with open(schema_path, 'r') as f:
            schema_sql = f.read()
        conn = get_db_connection()
        if conn is None:
            return
        with conn.cursor() as cur:
            cur.execute(schema_sql)
            conn.commit()
            logger.info("Database initialized successfully.")
    except FileNotFoundError:
        logger.error(f"schema.sql not found at {schema_path}")
    except Exception as e:
        logger.error(f"An error occurred during database initialization: {e}")
        if conn:
            conn.rollback()
    finally:
        if conn:
            conn.close()


def _row_to_dict(row):
    record = dict(row)
    for key in ('timestamp', 'updated_at'):
        if record.get(key) is not None and hasattr(record[key], 'isoformat'):
            record[key] = record[key].isoformat()
    return record


# =====================================================================================
# --- Error log functions ---
# =====================================================================================

def create_error_log(conn, record):
    """
    Inserts one `ErrorRecord` into 'trip_error_logs'.

    Returns:
        int or None: The new row id, or None if the insert failed.
    """
    row = error_record_to_row(record)
    payload = row['request_payload']
    if payload is not None and not isinstance(payload, str):
        payload = json.dumps(payload)
    try:
        with conn.cursor() as cur:
            cur.execute(
                "INSERT INTO trip_error_logs (endpoint, error_type, status_code, error_message, request_payload, "
                "container_id, item_id, step) VALUES (%s, %s, %s, %s, %s, %s, %s, %s) RETURNING id;",
                (row['endpoint'], row['error_kind'], row['status_code'], row['message'], payload,
                 row['container_id'], row['item_id'], row['step'])
            )
            log_id = cur.fetchone()[0]
        conn.commit()
        logger.info(f"Error log created with ID: {log_id}")
        return log_id
    except Exception as e:
        logger.error(f"Could not create error log. Reason: {e}")
        conn.rollback()
        return None


def find_error_logs(conn, filters=None, page=1, limit=50):
    """
    Fetches a page of error logs, newest first.

    Supported filters: error_type, endpoint (substring), container_id, item_id,
    start_date, end_date.

    Returns:
        tuple: (list[dict], total matching rows)
    """
    filters = filters or {}
    clauses = []
    params = []
    if filters.get('error_type'):
        clauses.append("error_type = %s")
        params.append(filters['error_type'])
    if filters.get('endpoint'):
        clauses.append("endpoint ILIKE %s")
        params.append(f"%{filters['endpoint']}%")
    if filters.get('container_id'):
        clauses.append("container_id = %s")
        params.append(filters['container_id'])
    if filters.get('item_id'):
        clauses.append("item_id = %s")
        params.append(filters['item_id'])
    if filters.get('start_date'):
        clauses.append("timestamp >= %s")
        params.append(filters['start_date'])
    if filters.get('end_date'):
        clauses.append("timestamp <= %s")
        params.append(filters['end_date'])
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""

    page = max(int(page), 1)
    limit = max(int(limit), 1)
    offset = (page - 1) * limit

    logs, total = [], 0
    try:
        with conn.cursor(cursor_factory=psycopg2.extras.DictCursor) as cur:
            cur.execute(f"SELECT COUNT(*) FROM trip_error_logs{where};", tuple(params))
            total = cur.fetchone()[0]
            cur.execute(
                f"SELECT {ERROR_LOG_COLUMNS} FROM trip_error_logs{where} "
                f"ORDER BY timestamp DESC LIMIT %s OFFSET %s;",
                tuple(params) + (limit, offset)
            )
            logs = [_row_to_dict(row) for row in cur.fetchall()]
    except Exception as e:
        logger.error(f"Could not fetch error logs. Reason: {e}")
    return logs, total


def get_error_log_by_id(conn, log_id):
    details = None
    try:
        with conn.cursor(cursor_factory=psycopg2.extras.DictCursor) as cur:
            cur.execute(f"SELECT {ERROR_LOG_COLUMNS} FROM trip_error_logs WHERE id = %s;", (log_id,))
            row = cur.fetchone()
            details = _row_to_dict(row) if row else None
    except Exception as e:
        logger.error(f"Could not fetch error log {log_id}. Reason: {e}")
    return details


def get_error_stats(conn):
    """
    Returns the total number of error logs and their distribution by error type
    and by endpoint.
    """
    stats = {'total': 0, 'by_error_type': {}, 'by_endpoint': {}}
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT COUNT(*) FROM trip_error_logs;")
            stats['total'] = cur.fetchone()[0]
            cur.execute("SELECT error_type, COUNT(*) FROM trip_error_logs GROUP BY error_type;")
            stats['by_error_type'] = {error_type: int(count) for error_type, count in cur.fetchall()}
            cur.execute("SELECT endpoint, COUNT(*) FROM trip_error_logs GROUP BY endpoint;")
            stats['by_endpoint'] = {endpoint: int(count) for endpoint, count in cur.fetchall()}
    except Exception as e:
        logger.error(f"Could not compute error log statistics. Reason: {e}")
    return stats


def delete_old_error_logs(conn, days_old=30):
    """
    Deletes error logs older than `days_old` days.

    Returns:
        int: The number of rows removed (0 on failure).
    """
    try:
        with conn.cursor() as cur:
            cur.execute(
                "DELETE FROM trip_error_logs WHERE timestamp < NOW() - make_interval(days => %s);",
                (int(days_old),)
            )
            deleted = cur.rowcount
        conn.commit()
        logger.info(f"Deleted {deleted} error logs older than {days_old} days.")
        return deleted
    except Exception as e:
        logger.error(f"Could not delete old error logs. Reason: {e}")
        conn.rollback()
        return 0


# =====================================================================================
# --- Error log sink ---
# =====================================================================================

class ErrorLogSink:
    """
    The append/query/cleanup store the API client and the trip workflow write
    to. Each operation uses its own connection, so it can be shared between
    request threads.
    """

    def __init__(self, connection_factory=get_db_connection):
        self.connection_factory = connection_factory

    def _run(self, operation, default, *args, **kwargs):
        conn = self.connection_factory()
        if conn is None:
            logger.error("No database connection available for the error log.")
            return default
        try:
            return operation(conn, *args, **kwargs)
        finally:
            conn.close()

    def append(self, record):
        return self._run(create_error_log, None, record)

    def query(self, filters=None, page=1, limit=50):
        return self._run(find_error_logs, ([], 0), filters, page, limit)

    def find_by_id(self, log_id):
        return self._run(get_error_log_by_id, None, log_id)

    def find_by_container(self, container_id, limit=1000):
        return self.query({'container_id': container_id}, 1, limit)[0]

    def find_by_item(self, item_id, limit=1000):
        return self.query({'item_id': item_id}, 1, limit)[0]

    def find_workflow_errors(self, limit=1000):
        return self.query({'error_type': 'WORKFLOW_ERROR'}, 1, limit)[0]

    def stats(self):
        return self._run(get_error_stats, {'total': 0, 'by_error_type': {}, 'by_endpoint': {}})

    def delete_older_than(self, days_old):
        return self._run(delete_old_error_logs, 0, days_old)


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
    parser = argparse.ArgumentParser(description="Database utility script.")
    parser.add_argument('--init', action='store_true', help='Create the error log table and indexes.')
    parser.add_argument('--cleanup', type=int, metavar='DAYS',
                        help='Delete error logs older than DAYS days.')
    args = parser.parse_args()

    if args.init:
        print("--- Database Initializer ---")
        initialize_database()
    if args.cleanup is not None:
        print("--- Error Log Cleanup ---")
        deleted_count = ErrorLogSink().delete_older_than(args.cleanup)
        print(f"Deleted {deleted_count} old error logs")
    if not args.init and args.cleanup is None:
        parser.print_help()
    print("--- Finished ---")
