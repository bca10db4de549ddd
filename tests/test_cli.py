from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
from typer.testing import CliRunner

from cli.app import app
from datastore.reading_store import ReadingStore
from gateway.mock_vendor import MockVendorGateway
from models.readings import RawReading, SensorKind
from services.supervisor import build_supervisor
from settings import Settings

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class StubClient:
    def __init__(self, config) -> None:
        self.config = config
        self.history_calls: List[tuple[str, str, Optional[datetime], Optional[datetime]]] = []
        self.latest_payload: Dict[str, Any] = {
            "readings": [
                {
                    "device_id": "D1",
                    "sensor_kind": "temperature",
                    "value": 21.45,
                    "observed_at": "2024-01-01T12:00:00Z",
                },
                {
                    "device_id": "D2",
                    "sensor_kind": "door_open",
                    "value": True,
                    "observed_at": "2024-01-01T12:00:00Z",
                },
            ],
            "count": 2,
        }
        self.closed = False

    def get_latest(self) -> Dict[str, Any]:
        return self.latest_payload

    def get_sensor_latest(self, device_id: str, sensor_kind: str) -> Dict[str, Any]:
        return {
            "device_id": device_id,
            "sensor_kind": sensor_kind,
            "value": 21.45,
            "observed_at": "2024-01-01T12:00:00Z",
        }

    def get_history(
        self,
        device_id: str,
        sensor_kind: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        self.history_calls.append((device_id, sensor_kind, start, end))
        return {
            "device_id": device_id,
            "sensor_kind": sensor_kind,
            "start": start.isoformat() if start else None,
            "end": end.isoformat() if end else None,
            "readings": [
                {
                    "id": "r1",
                    "device_id": device_id,
                    "sensor_kind": sensor_kind,
                    "recorded_at": "2024-01-01T12:00:00Z",
                    "value": 2145,
                    "decoded_value": 21.45,
                }
            ],
        }

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


def _install_stub(monkeypatch, stub: StubClient) -> None:
    def factory(config):
        stub.config = config
        return stub

    monkeypatch.setattr("cli.app.ApiClient", factory)


def test_latest_lists_every_reading(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["latest"])

    assert result.exit_code == 0
    assert "Latest Readings" in result.stdout
    assert "D1:" in result.stdout
    assert "temperature: 21.45" in result.stdout
    assert "door_open: True" in result.stdout
    assert stub.closed is True


def test_latest_filters_by_device(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["latest", "D2"])

    assert result.exit_code == 0
    assert "door_open" in result.stdout
    assert "D1:" not in result.stdout


def test_latest_for_one_sensor(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["latest", "D1", "temperature"])

    assert result.exit_code == 0
    assert "Latest Reading" in result.stdout
    assert "sensor_kind: temperature" in result.stdout


def test_latest_with_no_readings(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    stub.latest_payload = {"readings": [], "count": 0}
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["latest"])

    assert result.exit_code == 0
    assert "No readings observed yet." in result.stdout


def test_history_parses_bounds(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(
        app,
        ["history", "D1", "temperature", "--start", "2024-01-01T00:00:00Z", "--end", "2024-01-02T00:00:00+00:00"],
    )

    assert result.exit_code == 0
    assert "Reading History" in result.stdout
    assert "21.45 (encoded 2145)" in result.stdout
    assert "1 reading(s)" in result.stdout
    assert stub.history_calls == [
        ("D1", "temperature", datetime(2024, 1, 1, tzinfo=timezone.utc), datetime(2024, 1, 2, tzinfo=timezone.utc))
    ]


def test_history_rejects_naive_bound(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["history", "D1", "temperature", "--start", "2024-01-01T00:00:00"])

    assert result.exit_code == 2
    assert stub.history_calls == []


def test_base_url_option_reaches_client(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["--base-url", "http://telemetry:9000/", "latest"])

    assert result.exit_code == 0
    assert stub.config.base_url == "http://telemetry:9000"


def test_run_once_executes_both_cycles(monkeypatch, runner: CliRunner) -> None:
    _install_stub(monkeypatch, StubClient(config=None))
    gateway = MockVendorGateway()
    gateway.queue_readings(
        "D1",
        RawReading(SensorKind.temperature, 18.0, T0),
        RawReading(SensorKind.temperature_setpoint, 21.0, T0),
        RawReading(SensorKind.relay_state, False, T0),
    )
    settings = Settings(
        device_ids=("D1",),
        control_device_ids=(),
        poll_interval=60.0,
        control_interval=30.0,
        vendor_backend="mock",
        tuya_base_url="https://openapi.example.test",
        tuya_client_id="",
        tuya_client_secret="",
        vendor_timeout=1.0,
        store_path=None,
        thermostat_hysteresis=0.5,
        fatal_on_loop_failure=True,
        log_level="INFO",
    )
    supervisor = build_supervisor(settings, gateway=gateway, store=ReadingStore(name="test"))
    monkeypatch.setattr("cli.app.build_default_supervisor", lambda: supervisor)
    monkeypatch.setattr("cli.app.configure_logging", lambda: None)

    result = runner.invoke(app, ["run", "--once"])

    assert result.exit_code == 0
    assert "ingestion: 3 persisted" in result.stdout
    assert "control: 1 evaluated, 0 skipped, 1 command(s) sent" in result.stdout
    assert gateway.closed is True
    assert [c.value for c in gateway.commands] == [True]
