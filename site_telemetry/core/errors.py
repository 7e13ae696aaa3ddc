"""
Error taxonomy shared by the ingest and query paths.

Errors with a client-facing status carry a stable message; side-path errors
(``CacheError``, ``DispatchError``) are caught where they happen and only
logged.
"""

from typing import Optional


class TelemetryError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidRecord(TelemetryError):
    status_code = 400
    default_message = "Invalid telemetry record"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"{field}: {reason}")


class BadRequest(TelemetryError):
    status_code = 400
    default_message = "Bad request"


class Unauthorized(TelemetryError):
    status_code = 401
    default_message = "Unauthorized"


class NotFound(TelemetryError):
    status_code = 404
    default_message = "Not found"


class TooManyRequests(TelemetryError):
    status_code = 429
    default_message = "Rate limit exceeded"

    def __init__(self, message: Optional[str] = None, retry_after: int = 0):
        self.retry_after = retry_after
        super().__init__(message)


class StorageError(TelemetryError):
    status_code = 500
    default_message = "Storage unavailable"


class CacheError(TelemetryError):
    default_message = "Cache unavailable"


class DispatchError(TelemetryError):
    default_message = "Alert dispatch failed"
