from __future__ import annotations
from collections import deque
from datetime import datetime, timezone
from threading import Lock
from typing import Deque, Dict, List, Optional, Sequence, Union

from models.errors import GatewayError, GatewayTransportError
from models.readings import Command, DecodedValue, RawReading, SensorKind

Scripted = Union[Sequence[RawReading], GatewayError]


class MockVendorGateway:
    """In-memory stand-in for the vendor API.

    Each device has a queue of scripted responses; a response is either a list
    of readings or a ``GatewayError`` to raise. Once the queue is exhausted the
    last response is repeated. Sent commands are recorded in order.
    """

    def __init__(self, name: str = "mock") -> None:
        self.name = name
        self._responses: Dict[str, Deque[Scripted]] = {}
        self._last: Dict[str, Scripted] = {}
        self._command_failures: Dict[str, GatewayError] = {}
        self._commands: List[Command] = []
        self._fetch_calls: List[str] = []
        self._lock = Lock()
        self.closed = False

    def queue_readings(self, device_id: str, *readings: RawReading) -> None:
        with self._lock:
            self._responses.setdefault(device_id, deque()).append(list(readings))

    def queue_failure(self, device_id: str, error: Optional[GatewayError] = None) -> None:
        failure = error or GatewayTransportError(
            f"Device {device_id} unreachable.", device_id=device_id, endpoint="status"
        )
        with self._lock:
            self._responses.setdefault(device_id, deque()).append(failure)

    def fail_commands(self, device_id: str, error: Optional[GatewayError] = None) -> None:
        with self._lock:
            self._command_failures[device_id] = error or GatewayTransportError(
                f"Command to {device_id} timed out.", device_id=device_id, endpoint="commands"
            )

    def fetch_readings(self, device_id: str) -> Sequence[RawReading]:
        with self._lock:
            self._fetch_calls.append(device_id)
            queue = self._responses.get(device_id)
            if queue:
                response = queue.popleft()
                self._last[device_id] = response
            else:
                response = self._last.get(device_id, [])
        if isinstance(response, GatewayError):
            raise response
        return list(response)

    def send_command(self, device_id: str, kind: SensorKind, value: DecodedValue) -> None:
        with self._lock:
            failure = self._command_failures.get(device_id)
            if failure is not None:
                raise failure
            self._commands.append(Command(device_id=device_id, sensor_kind=SensorKind(kind), value=value))

    @property
    def commands(self) -> List[Command]:
        with self._lock:
            return list(self._commands)

    @property
    def fetch_calls(self) -> List[str]:
        with self._lock:
            return list(self._fetch_calls)

    def close(self) -> None:
        self.closed = True


class DemoVendorGateway(MockVendorGateway):
    """Simulated thermostats for running the service without vendor credentials.

    Temperature drifts up while the relay is on and down while it is off.
    """

    def __init__(self, device_ids: Sequence[str], setpoint: float = 21.0) -> None:
        super().__init__(name="demo")
        self._state: Dict[str, Dict[SensorKind, DecodedValue]] = {
            device_id: {
                SensorKind.temperature: 19.5,
                SensorKind.temperature_setpoint: setpoint,
                SensorKind.relay_state: False,
            }
            for device_id in device_ids
        }

    def fetch_readings(self, device_id: str) -> Sequence[RawReading]:
        with self._lock:
            self._fetch_calls.append(device_id)
            state = self._state.get(device_id)
            if state is None:
                raise GatewayTransportError(
                    f"Unknown device {device_id}.", device_id=device_id, endpoint="status"
                )
            step = 0.25 if state[SensorKind.relay_state] else -0.25
            state[SensorKind.temperature] = round(float(state[SensorKind.temperature]) + step, 2)
            now = datetime.now(timezone.utc)
            return [RawReading(kind, value, now) for kind, value in state.items()]

    def send_command(self, device_id: str, kind: SensorKind, value: DecodedValue) -> None:
        super().send_command(device_id, kind, value)
        with self._lock:
            state = self._state.get(device_id)
            if state is not None:
                state[SensorKind(kind)] = value
