"""Exception hierarchy shared by the ingestion and control services."""

from __future__ import annotations


class TelemetryError(Exception):
    """Base exception for all telemetry service errors."""


class InvalidValueKind(TelemetryError, ValueError):
    """A value's shape (boolean vs numeric) does not match its sensor kind."""

    def __init__(self, message: str, *, sensor_kind: str = "", value: object = None) -> None:
        self.sensor_kind = sensor_kind
        self.value = value
        super().__init__(message)


class StoreError(TelemetryError):
    """Base class for reading store failures."""


class DuplicateReadingError(StoreError):
    """A reading with the same (device_id, sensor_kind, recorded_at) already exists."""


class StoreUnavailableError(StoreError):
    """The backing storage could not be written."""


class GatewayError(TelemetryError):
    """Base class for vendor gateway failures."""

    def __init__(self, message: str, *, device_id: str = "", endpoint: str = "") -> None:
        self.device_id = device_id
        self.endpoint = endpoint
        super().__init__(message)


class GatewayTransportError(GatewayError):
    """Network failure, timeout, non-2xx status or undecodable body."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        device_id: str = "",
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        super().__init__(message, device_id=device_id, endpoint=endpoint)


class GatewayApiError(GatewayError):
    """The vendor API answered with ``success=false``."""

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        device_id: str = "",
        endpoint: str = "",
    ) -> None:
        self.code = code
        super().__init__(message, device_id=device_id, endpoint=endpoint)


class GatewayAuthError(GatewayApiError):
    """Access token could not be obtained or was rejected."""


class UnsupportedCommandError(GatewayError):
    """The sensor kind has no actuator data point on the vendor side."""


class FatalLoopError(TelemetryError):
    """Unrecoverable fault inside a periodic loop.

    Raising this from a cycle terminates the loop's worker and hands the
    decision about the rest of the process to the supervisor.
    """
