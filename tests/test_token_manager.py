import os
import sys
import unittest
from unittest.mock import patch

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

# Add project root to Python path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from common.errors import ConfigurationError
from trip_tracking.token_manager import TokenManager

AUDIENCE = 'https://api.chorussystems.net/'
CLIENT_EMAIL = 'trip-service@example.iam.gserviceaccount.com'


class FakeClock:
    def __init__(self, now=1_700_000_000):
        self.now = now

    def __call__(self):
        return self.now


class TestTokenManager(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        cls.private_pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode('utf-8')
        cls.public_key = key.public_key()

    def setUp(self):
        self.clock = FakeClock()
        self.manager = TokenManager(CLIENT_EMAIL, 'key-123', self.private_pem, AUDIENCE, clock=self.clock)

    def test_header_is_a_signed_rs256_assertion(self):
        """The token is an RS256 JWT with the expected header and claims."""
        header = self.manager.get_auth_header()
        self.assertTrue(header.startswith('Bearer '))
        token = header[len('Bearer '):]

        jwt_header = jwt.get_unverified_header(token)
        self.assertEqual(jwt_header['alg'], 'RS256')
        self.assertEqual(jwt_header['typ'], 'JWT')
        self.assertEqual(jwt_header['kid'], 'key-123')

        claims = jwt.decode(token, self.public_key, algorithms=['RS256'], audience=AUDIENCE,
                            options={'verify_exp': False, 'verify_iat': False})
        self.assertEqual(claims['iss'], CLIENT_EMAIL)
        self.assertEqual(claims['sub'], CLIENT_EMAIL)
        self.assertEqual(claims['iat'], self.clock.now)
        self.assertEqual(claims['exp'], self.clock.now + 3600)
        # base64url without padding.
        self.assertNotIn('=', token)

    def test_token_is_reused_within_refresh_window(self):
        with patch.object(self.manager, '_mint', wraps=self.manager._mint) as mint:
            first = self.manager.get_auth_header()
            self.clock.now += 55 * 60 - 1
            second = self.manager.get_auth_header()
        self.assertEqual(first, second)
        mint.assert_called_once()

    def test_token_is_refreshed_inside_buffer(self):
        """Five minutes before expiry a new token is signed."""
        with patch.object(self.manager, '_mint', wraps=self.manager._mint) as mint:
            first = self.manager.get_auth_header()
            self.clock.now += 55 * 60
            second = self.manager.get_auth_header()
        self.assertEqual(mint.call_count, 2)
        self.assertNotEqual(first, second)

    def test_invalidate_forces_a_new_token(self):
        with patch.object(self.manager, '_mint', wraps=self.manager._mint) as mint:
            self.manager.get_auth_header()
            self.manager.invalidate()
            self.manager.get_auth_header()
        self.assertEqual(mint.call_count, 2)

    def test_missing_credentials_raise_configuration_error(self):
        for email, key_id, pem in [(None, 'k', self.private_pem), (CLIENT_EMAIL, '', self.private_pem),
                                   (CLIENT_EMAIL, 'k', None)]:
            with self.assertRaises(ConfigurationError):
                TokenManager(email, key_id, pem, AUDIENCE)

    def test_unreadable_private_key_raises_configuration_error(self):
        with self.assertRaises(ConfigurationError):
            TokenManager(CLIENT_EMAIL, 'key-123', 'not a pem key', AUDIENCE)

    @patch('trip_tracking.token_manager.get_chorus_credentials', return_value=(None, None, None))
    def test_from_config_without_credentials(self, mock_credentials):
        with self.assertRaises(ConfigurationError):
            TokenManager.from_config()
        mock_credentials.assert_called_once()


if __name__ == '__main__':
    unittest.main()
