# -*- coding: utf-8 -*-
"""
================================================================================
Chorus API Client (V1)
================================================================================
Purpose:
----------------
This module is the single place where the service talks to the Chorus trip
API over HTTP. Every request goes through `ChorusApiClient.send`, which:

1.  Attaches a bearer token from the `TokenManager`.
2.  Sends the JSON payload and decodes the response (JSON or plain text).
3.  On failure, classifies the problem (API error, timeout, network error or
    other request error), writes exactly ONE record to the error log and
    raises a `RemoteApiError` that says whether that record was written.

There are no retries here. A failed call fails once, and it is up to the
trip workflow to decide what happens next.
----------------
"""

# =====================================================================================
# --- Imports ---
# =====================================================================================
import json
import logging

import requests

from common.errors import ErrorKind, RemoteApiError
from common.utils import get_setting
from trip_tracking.models import ErrorRecord
from trip_tracking.payloads import ApiRequest

logger = logging.getLogger(__name__)


# =====================================================================================
# --- Failure classification ---
# =====================================================================================
TIMEOUT_STATUS_CODES = (408, 504)
TIMEOUT_MARKERS = ('timeout', 'gateway timeout')
NETWORK_MARKERS = ('name or service not known', 'nodename nor servname', 'connection refused',
                   'connection reset', 'connection aborted', 'failed to establish a new connection',
                   'network')


def is_timeout_error(status_code, error_text):
    """A 408/504 status, or a body that mentions a timeout."""
    lowered = (error_text or '').lower()
    return status_code in TIMEOUT_STATUS_CODES or any(marker in lowered for marker in TIMEOUT_MARKERS)


def is_network_error(exc):
    """
    True for DNS failures, refused/reset connections and other socket-level
    problems. `requests` wraps all of these in `ConnectionError`; anything else
    is matched on its message.
    """
    if isinstance(exc, requests.exceptions.ConnectionError):
        return True
    lowered = str(exc).lower()
    return any(marker in lowered for marker in NETWORK_MARKERS)


# =====================================================================================
# --- Client ---
# =====================================================================================

class ChorusApiClient:
    """Authenticated HTTP access to the Chorus trip API."""

    def __init__(self, token_manager, error_sink, base_url=None, timeout=None, session=None):
        self.token_manager = token_manager
        self.error_sink = error_sink
        base_url = base_url or get_setting('CHORUS_API_BASE_URL')
        # Endpoints are appended directly, so the base must end with a slash.
        self.base_url = base_url if base_url.endswith('/') else base_url + '/'
        self.timeout = timeout if timeout is not None else get_setting(
            'CHORUS_REQUEST_TIMEOUT_SECONDS', cast=float)
        self.session = session

    def call(self, endpoint, payload=None, method='POST'):
        """Sends an untyped request. Prefer `send` with a builder from `payloads`."""
        return self.send(ApiRequest(endpoint, payload, method=method))

    def send(self, api_request):
        """
        Sends one request to the Chorus API.

        Args:
            api_request (ApiRequest): endpoint, payload and the identifiers the
                                      request concerns.

        Returns:
            dict | list | str: The decoded JSON body, or the raw text when the
                               response is not JSON.

        Raises:
            RemoteApiError: For any non-2xx status or transport failure.
        """
        # Token problems are configuration problems and are not logged as call failures.
        auth_header = self.token_manager.get_auth_header()
        url = f"{self.base_url}{api_request.endpoint}"
        headers = {
            'Authorization': auth_header,
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        }
        logger.info(f"Making {api_request.method} request to {url}")

        http = self.session or requests
        try:
            response = http.request(
                api_request.method,
                url,
                headers=headers,
                data=json.dumps(api_request.payload) if api_request.payload is not None else None,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise self._transport_failure(api_request, e) from e

        if not response.ok:
            raise self._http_failure(api_request, response)

        content_type = response.headers.get('Content-Type', '') or ''
        if 'application/json' in content_type:
            try:
                data = response.json()
            except ValueError as e:
                # requests' JSONDecodeError is a ValueError.
                raise self._transport_failure(api_request, e) from e
            logger.debug(f"JSON response received: {json.dumps(data)}")
            return data
        logger.debug(f"Text response received: {response.text}")
        return response.text

    # =====================================================================================
    # --- Failure handling ---
    # =====================================================================================

    def _http_failure(self, api_request, response):
        error_text = response.text
        kind = ErrorKind.TIMEOUT_ERROR if is_timeout_error(response.status_code, error_text) else ErrorKind.API_ERROR
        message = f"Chorus API Error ({response.status_code}): {error_text}"
        logger.error(f"API request failed: {response.status_code} {response.reason} - {error_text}")
        return self._record_failure(api_request, kind, response.status_code, message)

    def _transport_failure(self, api_request, exc):
        if is_network_error(exc):
            kind = ErrorKind.NETWORK_ERROR
            message = f"Network error: {exc}"
        else:
            kind = ErrorKind.REQUEST_ERROR
            message = f"Request failed: {exc}"
        logger.error(message)
        return self._record_failure(api_request, kind, 0, message)

    def _record_failure(self, api_request, kind, status_code, message):
        """Writes the single error log record for a failed call and builds the error."""
        record = ErrorRecord(
            endpoint=api_request.endpoint,
            error_kind=kind,
            status_code=status_code,
            message=message,
            request_payload=api_request.payload,
            container_id=api_request.container_id,
            item_id=api_request.item_id,
        )
        logged = False
        try:
            logged = self.error_sink.append(record) is not None
        except Exception as e:
            logger.error(f"Failed to log error to database: {e}")
        if not logged:
            logger.error(f"Error for {api_request.endpoint} was not written to the error log.")
        return RemoteApiError(
            message,
            api_request.endpoint,
            status_code=status_code,
            request_payload=api_request.payload,
            error_kind=kind,
            container_id=api_request.container_id,
            item_id=api_request.item_id,
            logged=logged,
        )
