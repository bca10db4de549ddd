"""Conversion between real-world sensor values and their persisted integer form.

Numeric kinds are stored as hundredths: ``encoded = round(value * 100)``.
Rounding is half-away-from-zero, applied to the decimal representation of the
value so that ``21.455`` encodes to ``2146`` regardless of binary float error.
Boolean kinds are stored as ``1``/``0``; any nonzero integer decodes to True.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal

from models.errors import InvalidValueKind
from models.readings import DecodedValue, SensorKind, SensorReading, ValueShape

SCALE = 100
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

_SCALE_DECIMAL = Decimal(SCALE)
_ONE = Decimal(1)


def shape_for(kind: SensorKind) -> ValueShape:
    return SensorKind(kind).shape


def encode(kind: SensorKind, value: DecodedValue) -> int:
    """Encode ``value`` for storage, validating it against ``kind``."""
    kind = SensorKind(kind)
    if shape_for(kind) is ValueShape.boolean:
        if not isinstance(value, bool):
            raise InvalidValueKind(
                f"{kind.value} expects a boolean value, got {type(value).__name__}.",
                sensor_kind=kind.value,
                value=value,
            )
        return 1 if value else 0

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidValueKind(
            f"{kind.value} expects a numeric value, got {type(value).__name__}.",
            sensor_kind=kind.value,
            value=value,
        )
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidValueKind(
            f"{kind.value} cannot encode non-finite value {value!r}.",
            sensor_kind=kind.value,
            value=value,
        )

    scaled = (Decimal(repr(value)) * _SCALE_DECIMAL).quantize(_ONE, rounding=ROUND_HALF_UP)
    encoded = int(scaled)
    if encoded < INT64_MIN or encoded > INT64_MAX:
        raise InvalidValueKind(
            f"{kind.value} value {value!r} does not fit in a 64-bit integer.",
            sensor_kind=kind.value,
            value=value,
        )
    return encoded


def decode(kind: SensorKind, encoded: int) -> DecodedValue:
    """Decode a stored integer back into its real-world value."""
    if shape_for(kind) is ValueShape.boolean:
        return encoded != 0
    return encoded / SCALE


def decode_reading(reading: SensorReading) -> DecodedValue:
    return decode(reading.sensor_kind, reading.value)
