"""Vendor gateway interface used by the ingestion and control loops."""

from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable

from models.readings import DecodedValue, RawReading, SensorKind


@runtime_checkable
class VendorGateway(Protocol):
    """Structural interface for the IoT vendor API.

    Implementations own authentication and request signing and apply a
    bounded timeout to every call. Failures surface as ``GatewayError``
    subclasses; nothing else should escape.
    """

    def fetch_readings(self, device_id: str) -> Sequence[RawReading]:
        ...

    def send_command(self, device_id: str, kind: SensorKind, value: DecodedValue) -> None:
        ...

    def close(self) -> None:
        ...
