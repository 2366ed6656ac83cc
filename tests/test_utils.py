import os
import sys
import unittest
from unittest.mock import patch, mock_open

# Add project root to Python path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from common import utils


class TestCommonUtils(unittest.TestCase):

    @patch('builtins.open', new_callable=mock_open, read_data="CHORUS_PRIVATE_KEY_ID=abc=123\nOTHER=x\n")
    def test_get_secret_from_file(self, mock_file):
        self.assertEqual(utils.get_secret('CHORUS_PRIVATE_KEY_ID'), 'abc=123')

    @patch('builtins.open', side_effect=FileNotFoundError)
    def test_get_secret_falls_back_to_environment(self, mock_file):
        with patch.dict(os.environ, {'CHORUS_CLIENT_EMAIL': 'svc@example.com'}):
            self.assertEqual(utils.get_secret('CHORUS_CLIENT_EMAIL'), 'svc@example.com')

    @patch('builtins.open', side_effect=FileNotFoundError)
    def test_get_secret_missing(self, mock_file):
        with patch.dict(os.environ, {}, clear=True):
            self.assertIsNone(utils.get_secret('CHORUS_CLIENT_EMAIL'))

    @patch('common.utils.get_secret')
    def test_get_chorus_credentials_unescapes_newlines(self, mock_secret):
        mock_secret.side_effect = lambda key: {
            'CHORUS_CLIENT_EMAIL': 'svc@example.com',
            'CHORUS_PRIVATE_KEY_ID': 'kid',
            'CHORUS_PRIVATE_KEY': '-----BEGIN-----\\nabc\\n-----END-----',
        }[key]

        email, key_id, key = utils.get_chorus_credentials()

        self.assertEqual((email, key_id), ('svc@example.com', 'kid'))
        self.assertEqual(key, '-----BEGIN-----\nabc\n-----END-----')

    @patch('common.utils.get_secret', return_value=None)
    def test_get_chorus_credentials_missing(self, mock_secret):
        self.assertEqual(utils.get_chorus_credentials(), (None, None, None))

    def test_get_setting(self):
        with patch.dict(os.environ, {'TRIP_SETTLE_DELAY_SECONDS': '0.5'}):
            self.assertEqual(utils.get_setting('TRIP_SETTLE_DELAY_SECONDS', cast=float), 0.5)
        with patch.dict(os.environ, {'TRIP_SETTLE_DELAY_SECONDS': 'fast'}):
            self.assertEqual(utils.get_setting('TRIP_SETTLE_DELAY_SECONDS', cast=float), 0.1)
        with patch.dict(os.environ, {}, clear=True):
            self.assertEqual(utils.get_setting('CHORUS_API_BASE_URL'), 'https://api.chorussystems.net/')


if __name__ == '__main__':
    unittest.main()
