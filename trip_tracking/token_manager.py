# -*- coding: utf-8 -*-
"""
================================================================================
Chorus API Token Manager
================================================================================
Purpose:
----------------
Every call to the Chorus trip API needs an `Authorization: Bearer ...` header.
The API accepts a self-signed service account assertion (an RS256 JWT) as the
bearer value, so no call to an identity provider is needed: the token is
signed locally with the service account's private key.

A token is valid for one hour. It is cached and re-used until it is within
five minutes of expiring, then a fresh one is signed. One manager is created
per running service and handed to the API client.
----------------
"""

import time
import logging
import threading
from datetime import datetime, timezone

import jwt
from cryptography.hazmat.primitives import serialization

from common.errors import ConfigurationError
from common.utils import get_chorus_credentials, get_setting
from trip_tracking.models import Credential

logger = logging.getLogger(__name__)

# One hour.
TOKEN_VALIDITY_SECONDS = 3600
# Refresh the token once it is within five minutes of expiring.
REFRESH_BUFFER_SECONDS = 300


class TokenManager:
    """Signs and caches the bearer token for the Chorus API."""

    def __init__(self, client_email, private_key_id, private_key_pem, audience,
                 clock=time.time, validity_seconds=TOKEN_VALIDITY_SECONDS,
                 refresh_buffer_seconds=REFRESH_BUFFER_SECONDS):
        if not client_email or not private_key_id or not private_key_pem:
            raise ConfigurationError(
                "Service account credentials are not configured for the Chorus API "
                "(client email, private key id and private key are required)."
            )
        self.client_email = client_email
        self.private_key_id = private_key_id
        self.audience = audience
        self.validity_seconds = validity_seconds
        self.refresh_buffer_seconds = refresh_buffer_seconds
        self._clock = clock
        self._private_key = self._load_private_key(private_key_pem)
        self._credential = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, audience=None, **kwargs):
        """Builds a manager from `secrets.txt` / environment credentials."""
        client_email, private_key_id, private_key_pem = get_chorus_credentials()
        if audience is None:
            audience = get_setting('CHORUS_API_BASE_URL')
        return cls(client_email, private_key_id, private_key_pem, audience, **kwargs)

    @staticmethod
    def _load_private_key(private_key_pem):
        if isinstance(private_key_pem, str):
            private_key_pem = private_key_pem.encode('utf-8')
        try:
            return serialization.load_pem_private_key(private_key_pem, password=None)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"The Chorus API private key could not be loaded: {e}") from e

    # =====================================================================================
    # --- Token lifecycle ---
    # =====================================================================================

    def _needs_refresh(self, now):
        if self._credential is None:
            return True
        return now >= self._credential.expires_at - self.refresh_buffer_seconds

    def _mint(self, now):
        """Signs a new assertion valid from `now` for `validity_seconds`."""
        issued_at = int(now)
        claims = {
            'iss': self.client_email,
            'sub': self.client_email,
            'aud': self.audience,
            'iat': issued_at,
            'exp': issued_at + self.validity_seconds,
        }
        # PyJWT adds `alg` and `typ` and base64url-encodes without padding.
        token = jwt.encode(claims, self._private_key, algorithm='RS256',
                           headers={'kid': self.private_key_id})
        logger.info("JWT token generated successfully.")
        return Credential(token=token, issued_at=issued_at, expires_at=issued_at + self.validity_seconds)

    def get_auth_header(self):
        """
        Returns the `Authorization` header value, signing a new token when none
        is cached or the cached one is inside the refresh buffer.
        """
        with self._lock:
            now = self._clock()
            if self._needs_refresh(now):
                logger.info("Token expired or missing, refreshing...")
                self._credential = self._mint(now)
                expires = datetime.fromtimestamp(self._credential.expires_at, tz=timezone.utc)
                logger.info(f"Token refreshed. New expiration: {expires.isoformat()}")
            return f"Bearer {self._credential.token}"

    def invalidate(self):
        """Drops the cached token so the next call signs a fresh one."""
        with self._lock:
            self._credential = None
