import os
import sys
import unittest
import psycopg2
from unittest.mock import patch, MagicMock, mock_open

# Add project root to Python path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from common.errors import ErrorKind
from database.db_utils import (get_db_connection, initialize_database, create_error_log, find_error_logs,
                               delete_old_error_logs, get_error_stats, ErrorLogSink)
from trip_tracking.models import ErrorRecord

RECORD = ErrorRecord(
    endpoint='v1alpha1/trips',
    error_kind=ErrorKind.API_ERROR,
    status_code=500,
    message='Chorus API Error (500): boom',
    request_payload={'trip': {'customerId': 'O1'}},
    container_id='T1',
    item_id='O1',
)


def make_conn():
    mock_conn = MagicMock()
    mock_cursor = MagicMock()
    mock_conn.cursor.return_value.__enter__.return_value = mock_cursor
    return mock_conn, mock_cursor


class TestDatabaseUtils(unittest.TestCase):

    @patch('database.db_utils.psycopg2.connect')
    def test_get_db_connection_success(self, mock_connect):
        mock_conn = MagicMock()
        mock_connect.return_value = mock_conn

        self.assertEqual(get_db_connection(), mock_conn)
        mock_connect.assert_called_once()

    @patch('database.db_utils.psycopg2.connect')
    def test_get_db_connection_failure(self, mock_connect):
        mock_connect.side_effect = psycopg2.OperationalError("Connection failed")
        self.assertIsNone(get_db_connection())

    @patch('database.db_utils.get_db_connection')
    @patch('builtins.open', new_callable=mock_open, read_data="CREATE TABLE trip_error_logs ();")
    def test_initialize_database_success(self, mock_file, mock_get_conn):
        mock_conn, mock_cursor = make_conn()
        mock_get_conn.return_value = mock_conn

        initialize_database()

        mock_cursor.execute.assert_called_once_with("CREATE TABLE trip_error_logs ();")
        mock_conn.commit.assert_called_once()
        mock_conn.close.assert_called_once()

    def test_create_error_log(self):
        mock_conn, mock_cursor = make_conn()
        mock_cursor.fetchone.return_value = (42,)

        log_id = create_error_log(mock_conn, RECORD)

        self.assertEqual(log_id, 42)
        mock_cursor.execute.assert_called_once_with(
            unittest.mock.ANY,
            ('v1alpha1/trips', 'API_ERROR', 500, 'Chorus API Error (500): boom',
             '{"trip": {"customerId": "O1"}}', 'T1', 'O1', None)
        )
        mock_conn.commit.assert_called_once()

    def test_create_error_log_failure_returns_none(self):
        mock_conn, mock_cursor = make_conn()
        mock_cursor.execute.side_effect = psycopg2.DatabaseError("insert failed")

        self.assertIsNone(create_error_log(mock_conn, RECORD))
        mock_conn.rollback.assert_called_once()

    def test_find_error_logs_applies_filters_and_pagination(self):
        mock_conn, mock_cursor = make_conn()
        mock_cursor.fetchone.return_value = (3,)
        mock_cursor.fetchall.return_value = [{'id': 1, 'endpoint': 'v1alpha1/trips', 'timestamp': None}]

        logs, total = find_error_logs(mock_conn, {'error_type': 'API_ERROR', 'endpoint': 'trips'}, page=2, limit=10)

        self.assertEqual(total, 3)
        self.assertEqual(logs, [{'id': 1, 'endpoint': 'v1alpha1/trips', 'timestamp': None}])
        count_sql, count_params = mock_cursor.execute.call_args_list[0][0]
        self.assertIn('error_type = %s', count_sql)
        self.assertIn('endpoint ILIKE %s', count_sql)
        self.assertEqual(count_params, ('API_ERROR', '%trips%'))
        page_sql, page_params = mock_cursor.execute.call_args_list[1][0]
        self.assertIn('ORDER BY timestamp DESC', page_sql)
        self.assertEqual(page_params, ('API_ERROR', '%trips%', 10, 10))

    def test_delete_old_error_logs_returns_count(self):
        mock_conn, mock_cursor = make_conn()
        mock_cursor.rowcount = 7

        self.assertEqual(delete_old_error_logs(mock_conn, 30), 7)
        mock_cursor.execute.assert_called_once_with(unittest.mock.ANY, (30,))
        mock_conn.commit.assert_called_once()

    def test_cleanup_is_idempotent(self):
        mock_conn, mock_cursor = make_conn()
        mock_cursor.rowcount = 0
        self.assertEqual(delete_old_error_logs(mock_conn, 30), 0)

    def test_get_error_stats(self):
        mock_conn, mock_cursor = make_conn()
        mock_cursor.fetchone.return_value = (5,)
        mock_cursor.fetchall.side_effect = [
            [('API_ERROR', 3), ('WORKFLOW_ERROR', 2)],
            [('v1alpha1/trips', 5)],
        ]

        stats = get_error_stats(mock_conn)

        self.assertEqual(stats, {'total': 5, 'by_error_type': {'API_ERROR': 3, 'WORKFLOW_ERROR': 2},
                                 'by_endpoint': {'v1alpha1/trips': 5}})


class TestErrorLogSink(unittest.TestCase):

    def test_append_opens_and_closes_a_connection(self):
        mock_conn, mock_cursor = make_conn()
        mock_cursor.fetchone.return_value = (1,)
        sink = ErrorLogSink(connection_factory=lambda: mock_conn)

        self.assertEqual(sink.append(RECORD), 1)
        mock_conn.close.assert_called_once()

    def test_append_without_database_returns_none(self):
        sink = ErrorLogSink(connection_factory=lambda: None)
        self.assertIsNone(sink.append(RECORD))
        self.assertEqual(sink.query(), ([], 0))
        self.assertEqual(sink.delete_older_than(30), 0)

    def test_find_by_container_uses_filter(self):
        sink = ErrorLogSink(connection_factory=MagicMock())
        with patch.object(sink, 'query', return_value=([{'id': 1}], 1)) as mock_query:
            self.assertEqual(sink.find_by_container('T1'), [{'id': 1}])
        mock_query.assert_called_once_with({'container_id': 'T1'}, 1, 1000)


if __name__ == '__main__':
    unittest.main()
