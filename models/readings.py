"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Union
from uuid import uuid4

DecodedValue = Union[float, bool]


class ValueShape(str, Enum):
    """Real-world representation a sensor kind decodes to."""

    numeric = "numeric"
    boolean = "boolean"


class SensorKind(str, Enum):
    """Closed set of measurement and actuation channels."""

    temperature = "temperature"
    humidity = "humidity"
    door_open = "door_open"
    power_consumption = "power_consumption"
    relay_state = "relay_state"
    temperature_setpoint = "temperature_setpoint"

    @property
    def shape(self) -> ValueShape:
        return SHAPES[self]


SHAPES: dict[SensorKind, ValueShape] = {
    SensorKind.temperature: ValueShape.numeric,
    SensorKind.humidity: ValueShape.numeric,
    SensorKind.door_open: ValueShape.boolean,
    SensorKind.power_consumption: ValueShape.numeric,
    SensorKind.relay_state: ValueShape.boolean,
    SensorKind.temperature_setpoint: ValueShape.numeric,
}


def _require_aware(value: datetime, name: str) -> None:
    if not isinstance(value, datetime):
        raise ValueError(f"{name} must be a datetime, got {type(value).__name__}.")
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        raise ValueError(f"{name} must be timezone-aware, got {value!r}.")


@dataclass(frozen=True, slots=True)
class RawReading:
    """One (kind, value, timestamp) triple as returned by a vendor gateway."""

    sensor_kind: SensorKind
    value: DecodedValue
    observed_at: datetime


@dataclass(frozen=True, slots=True)
class SensorReading:
    """A persisted reading. ``value`` holds the encoded integer form."""

    device_id: str
    sensor_kind: SensorKind
    recorded_at: datetime
    value: int
    id: str = field(default_factory=lambda: str(uuid4()))

    def __post_init__(self) -> None:
        _require_aware(self.recorded_at, "recorded_at")

    @property
    def key(self) -> tuple[str, SensorKind, datetime]:
        return (self.device_id, self.sensor_kind, self.recorded_at)


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """Latest decoded value for one (device, kind) pair and when it was observed."""

    value: DecodedValue
    observed_at: datetime


@dataclass(frozen=True, slots=True)
class Command:
    """An actuator command produced by a control policy."""

    device_id: str
    sensor_kind: SensorKind
    value: DecodedValue
    reason: str = ""
