# -*- coding: utf-8 -*-
"""
================================================================================
Error Taxonomy
================================================================================
Purpose:
----------------
Every failure the trip tracking service can raise is one of the classes
below. Keeping them in one place means the gateway, the orchestrator and the
web layer all agree on what a failure looks like and on how it is recorded
in the `trip_error_logs` table.

- `ConfigurationError`: fatal, raised at startup when credentials are missing.
- `ValidationError`: the submitted batch is malformed.
- `WorkflowError`: a business-logic failure raised by the orchestrator.
- `RemoteApiError`: a single call to the carrier API failed.
----------------
"""

from enum import Enum


class ErrorKind(str, Enum):
    """The `error_type` values written to the error log."""
    API_ERROR = 'API_ERROR'
    TIMEOUT_ERROR = 'TIMEOUT_ERROR'
    NETWORK_ERROR = 'NETWORK_ERROR'
    REQUEST_ERROR = 'REQUEST_ERROR'
    WORKFLOW_ERROR = 'WORKFLOW_ERROR'
    BUSINESS_ERROR = 'BUSINESS_ERROR'


class ConfigurationError(Exception):
    """Raised when the service cannot start because configuration is missing."""


class ValidationError(ValueError):
    """Raised when an incoming batch of work items is malformed."""


class WorkflowError(Exception):
    """Raised by the orchestrator for failures that are not remote call failures."""


class RemoteApiError(Exception):
    """
    A failed call to the carrier API.

    The `logged` flag is fixed when the error is built: the gateway only
    creates the error once it knows whether the audit record was written.
    Anything catching a `RemoteApiError` with `logged=True` must not write
    a second record for it.
    """

    def __init__(self, message, endpoint, status_code=0, request_payload=None,
                 error_kind=ErrorKind.API_ERROR, container_id=None, item_id=None,
                 logged=False):
        super().__init__(message)
        self.message = message
        self.endpoint = endpoint
        self.status_code = status_code
        self.request_payload = request_payload
        self.error_kind = ErrorKind(error_kind)
        self.container_id = container_id
        self.item_id = item_id
        self._logged = bool(logged)

    @property
    def logged(self):
        return self._logged

    def __repr__(self):
        return (f"RemoteApiError(endpoint={self.endpoint!r}, status_code={self.status_code}, "
                f"error_kind={self.error_kind.value}, logged={self._logged})")
