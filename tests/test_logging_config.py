from __future__ import annotations

import logging

from logging_config import ContextualFormatter
from models.readings import SensorKind


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="services.ingestion",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg="Failed to fetch readings: %s",
        args=("timeout",),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_appends_known_context() -> None:
    formatter = ContextualFormatter(fmt="%(levelname)s %(message)s")

    line = formatter.format(_record(device_id="D1", sensor_kind=SensorKind.humidity, reason="GatewayTransportError"))

    assert line == (
        "WARNING Failed to fetch readings: timeout"
        " | device_id=D1 sensor_kind=humidity reason=GatewayTransportError"
    )


def test_formatter_ignores_missing_and_unknown_keys() -> None:
    formatter = ContextualFormatter(fmt="%(message)s", extra_keys=["loop"])

    assert formatter.format(_record(device_id="D1")) == "Failed to fetch readings: timeout"
    assert formatter.format(_record(loop="control-loop")) == (
        "Failed to fetch readings: timeout | loop=control-loop"
    )
