"""Consumer side: evaluate a control policy over cached readings and push commands."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Optional, Protocol, Sequence, Set, Tuple

from gateway.base import VendorGateway
from models.errors import FatalLoopError, GatewayError
from models.readings import CacheEntry, Command, SensorKind
from services.reading_cache import ReadingCache

logger = logging.getLogger(__name__)

Snapshot = Mapping[SensorKind, CacheEntry]


class ControlPolicy(Protocol):
    """Decision function mapping a device's cached readings to at most one command."""

    required_kinds: Tuple[SensorKind, ...]
    optional_kinds: Tuple[SensorKind, ...]

    def evaluate(self, device_id: str, snapshot: Snapshot) -> Optional[Command]:
        ...


class ThermostatPolicy:
    """Bang-bang thermostat with a hysteresis band around the setpoint.

    Switches the relay on below ``setpoint - hysteresis`` and off above
    ``setpoint + hysteresis``. No command is issued when the cached relay
    state already matches, or when the temperature is inside the band.
    """

    required_kinds = (SensorKind.temperature, SensorKind.temperature_setpoint)
    optional_kinds = (SensorKind.relay_state,)

    def __init__(self, hysteresis: float = 0.5) -> None:
        if hysteresis < 0:
            raise ValueError("hysteresis must not be negative.")
        self.hysteresis = hysteresis

    def evaluate(self, device_id: str, snapshot: Snapshot) -> Optional[Command]:
        temperature = float(snapshot[SensorKind.temperature].value)
        setpoint = float(snapshot[SensorKind.temperature_setpoint].value)
        relay = snapshot.get(SensorKind.relay_state)
        relay_on = bool(relay.value) if relay is not None else None

        if temperature < setpoint - self.hysteresis:
            desired = True
        elif temperature > setpoint + self.hysteresis:
            desired = False
        else:
            return None

        if relay_on is desired:
            return None
        return Command(
            device_id=device_id,
            sensor_kind=SensorKind.relay_state,
            value=desired,
            reason=f"temperature={temperature} setpoint={setpoint}",
        )


@dataclass
class ControlCycleReport:
    """Outcome counters for one control cycle."""

    devices_evaluated: int = 0
    devices_skipped: List[str] = field(default_factory=list)
    commands_sent: List[Command] = field(default_factory=list)
    commands_failed: List[Command] = field(default_factory=list)


class ControlLoop:
    """Reads the latest cached readings and forwards policy commands.

    ``device_ids`` restricts the loop to a fixed set of devices; when empty,
    every device present in the cache is controlled.
    """

    def __init__(
        self,
        gateway: VendorGateway,
        cache: ReadingCache,
        policy: ControlPolicy,
        device_ids: Iterable[str] = (),
    ) -> None:
        self.gateway = gateway
        self.cache = cache
        self.policy = policy
        self.device_ids: Sequence[str] = tuple(device_ids)
        self._skipped: Set[str] = set()
        self._waiting_for_readings = False

    def run_cycle(self) -> ControlCycleReport:
        report = ControlCycleReport()
        if not len(self.cache):
            if not self._waiting_for_readings:
                self._waiting_for_readings = True
                logger.info("No sensor readings in cache yet; skipping control cycle.")
            report.devices_skipped.extend(self.device_ids)
            return report
        self._waiting_for_readings = False

        device_ids = self.device_ids or self.cache.device_ids()
        for device_id in device_ids:
            snapshot = self._snapshot(device_id)
            if snapshot is None:
                report.devices_skipped.append(device_id)
                continue

            report.devices_evaluated += 1
            try:
                command = self.policy.evaluate(device_id, snapshot)
            except FatalLoopError:
                raise
            except Exception as exc:  # noqa: BLE001 - contained to this device
                logger.exception(
                    "Control policy failed",
                    extra={"device_id": device_id, "reason": type(exc).__name__},
                )
                continue
            if command is None:
                continue
            self._send(command, report)

        logger.info(
            "Control cycle complete: %d evaluated, %d skipped, %d commands sent, %d failed",
            report.devices_evaluated,
            len(report.devices_skipped),
            len(report.commands_sent),
            len(report.commands_failed),
        )
        return report

    def _snapshot(self, device_id: str) -> Optional[dict[SensorKind, CacheEntry]]:
        snapshot: dict[SensorKind, CacheEntry] = {}
        missing: List[SensorKind] = []
        for kind in self.policy.required_kinds:
            entry = self.cache.get(device_id, kind)
            if entry is None:
                missing.append(kind)
            else:
                snapshot[kind] = entry

        if missing:
            if device_id not in self._skipped:
                self._skipped.add(device_id)
                logger.info(
                    "Skipping device until readings arrive",
                    extra={
                        "device_id": device_id,
                        "reason": "missing " + ",".join(kind.value for kind in missing),
                    },
                )
            return None

        if device_id in self._skipped:
            self._skipped.discard(device_id)
            logger.info("Device has all required readings again", extra={"device_id": device_id})

        for kind in self.policy.optional_kinds:
            entry = self.cache.get(device_id, kind)
            if entry is not None:
                snapshot[kind] = entry
        return snapshot

    def _send(self, command: Command, report: ControlCycleReport) -> None:
        context = {
            "device_id": command.device_id,
            "sensor_kind": command.sensor_kind,
            "command": command.value,
            "reason": command.reason or None,
        }
        try:
            self.gateway.send_command(command.device_id, command.sensor_kind, command.value)
        except GatewayError as exc:
            report.commands_failed.append(command)
            logger.warning("Command failed: %s", exc, extra=context)
            return
        except FatalLoopError:
            raise
        except Exception as exc:  # noqa: BLE001 - contained to this device
            report.commands_failed.append(command)
            logger.exception("Unexpected error sending command: %s", exc, extra=context)
            return
        report.commands_sent.append(command)
        logger.info("Command sent", extra=context)
