"""
Failure taxonomy for the ingestion pipeline.

Each failure carries the HTTP status and the stable error code the API reports, so the
transport layer maps exceptions to responses without knowing the pipeline.
"""

from typing import Any


class VitalSyncError(Exception):
    """Base class for every expected pipeline failure."""

    status_code: int = 500
    code: str = "internal_error"
    retryable: bool = False

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class AuthenticationFailure(VitalSyncError):
    """Missing, unknown or mismatched device credential. Safe to retry with the right key."""

    status_code = 401
    code = "invalid_credentials"
    retryable = True


class AuthorizationFailure(VitalSyncError):
    """Valid credential for a device that is not active. Needs operator action."""

    status_code = 403
    code = "device_inactive"


class ValidationFailure(VitalSyncError):
    """Malformed payload."""

    status_code = 400
    code = "validation_error"


class StorageFailure(VitalSyncError):
    """Backing store error. Retryable by the caller with backoff."""

    status_code = 500
    code = "storage_error"
    retryable = True


class DistributionFailure(VitalSyncError):
    """Realtime delivery problem. Logged only, never surfaced to the ingesting device."""

    code = "distribution_error"


class AlertNotFound(VitalSyncError):
    status_code = 404
    code = "alert_not_found"


class SimulatorDisabled(VitalSyncError):
    status_code = 404
    code = "simulator_disabled"
