"""Pydantic schemas for the HTTP API layer and stored reading rows."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, Field

from models.readings import SensorKind, SensorReading
from services.codec import decode_reading


class StoredReading(BaseModel):
    """A persisted reading row; ``value`` is the encoded integer."""

    id: str
    device_id: str
    sensor_kind: SensorKind
    recorded_at: datetime
    value: int = Field(..., description="Numeric kinds: hundredths. Boolean kinds: 0 or 1.")

    @classmethod
    def from_reading(cls, reading: SensorReading) -> "StoredReading":
        return cls(
            id=reading.id,
            device_id=reading.device_id,
            sensor_kind=reading.sensor_kind,
            recorded_at=reading.recorded_at,
            value=reading.value,
        )

    def to_reading(self) -> SensorReading:
        return SensorReading(
            id=self.id,
            device_id=self.device_id,
            sensor_kind=self.sensor_kind,
            recorded_at=self.recorded_at,
            value=self.value,
        )


class SensorReadingOut(StoredReading):
    """Historical reading exposed via the API, with its decoded value."""

    decoded_value: Union[bool, float]

    @classmethod
    def from_reading(cls, reading: SensorReading) -> "SensorReadingOut":
        return cls(
            id=reading.id,
            device_id=reading.device_id,
            sensor_kind=reading.sensor_kind,
            recorded_at=reading.recorded_at,
            value=reading.value,
            decoded_value=decode_reading(reading),
        )


class LatestReadingOut(BaseModel):
    """Most recent cached value for one (device, kind) pair."""

    device_id: str
    sensor_kind: SensorKind
    value: Union[bool, float]
    observed_at: datetime


class LatestSnapshotOut(BaseModel):
    readings: List[LatestReadingOut] = Field(default_factory=list)
    count: int = Field(0, ge=0)


class HistoryOut(BaseModel):
    device_id: str
    sensor_kind: SensorKind
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    readings: List[SensorReadingOut] = Field(default_factory=list)
