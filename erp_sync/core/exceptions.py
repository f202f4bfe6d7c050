from typing import Any, Dict, Optional


class SyncError(Exception):
    """Base exception for every synchronization failure."""

    def __init__(self, message: str = "", context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ErpApiError(SyncError):
    """An ERP call failed (connection, timeout or an error response)."""

    def __init__(self, message: str = "", status_code: Optional[int] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context)
        self.status_code = status_code


class ErpAuthError(ErpApiError):
    """The ERP rejected the session credentials."""


class CircuitOpenError(SyncError):
    """The circuit breaker is open; the ERP call was not attempted."""


class MappingError(SyncError):
    """Local data cannot be mapped to ERP documents (e.g. no SKU)."""


class QueueError(SyncError):
    """Queue bookkeeping failure."""
