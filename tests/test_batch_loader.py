import os
import sys
import json
import shutil
import tempfile
import unittest

# Add project root to Python path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from common.errors import ValidationError
from trip_tracking.batch_loader import load_work_items


class TestBatchLoader(unittest.TestCase):

    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.tmp_dir)

    def write(self, name, content):
        path = os.path.join(self.tmp_dir, name)
        with open(path, 'w') as f:
            f.write(content)
        return path

    def test_csv_with_warehouse_headers_and_generated_times(self):
        path = self.write('batch.csv', "Tote Id,OLPN,Location\nT1,O1,A\n,O2,B\nT3,O3,C\n")

        items = load_work_items(path, start_time='2025-01-01T00:00:00Z', interval_seconds=2)

        self.assertEqual([(i.container_id, i.item_id) for i in items], [('T1', 'O1'), ('T3', 'O3')])
        self.assertEqual([i.event_time for i in items],
                         ['2025-01-01T00:00:00.000Z', '2025-01-01T00:00:02.000Z'])

    def test_csv_with_event_time_column(self):
        path = self.write('batch.csv', "containerId,itemId,eventTime\nT1,O1,2025-01-01T00:00:05Z\n")

        items = load_work_items(path)

        self.assertEqual(items[0].event_time, '2025-01-01T00:00:05Z')

    def test_csv_without_olpn_column(self):
        path = self.write('batch.csv', "Tote Id,Other\nT1,x\n")
        with self.assertRaises(ValidationError):
            load_work_items(path)

    def test_json_batch(self):
        path = self.write('batch.json', json.dumps({'items': [
            {'containerId': 'T1', 'itemId': 'O1', 'eventTime': '2025-01-01T00:00:01Z'},
            {'containerId': 'T2', 'itemId': ''},
        ]}))

        items = load_work_items(path)

        self.assertEqual(len(items), 1)
        self.assertEqual(items[0].item_id, 'O1')

    def test_empty_file_is_rejected(self):
        path = self.write('batch.json', '[]')
        with self.assertRaises(ValidationError):
            load_work_items(path)

    def test_unsupported_extension(self):
        path = self.write('batch.txt', 'T1,O1')
        with self.assertRaises(ValidationError):
            load_work_items(path)


if __name__ == '__main__':
    unittest.main()
