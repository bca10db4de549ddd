"""Producer side: poll the vendor, persist readings and refresh the cache."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence

from datastore.reading_store import ReadingStore
from gateway.base import VendorGateway
from models.errors import (
    DuplicateReadingError,
    FatalLoopError,
    GatewayError,
    InvalidValueKind,
    StoreUnavailableError,
)
from models.readings import RawReading, SensorKind, SensorReading
from services import codec
from services.reading_cache import ReadingCache

logger = logging.getLogger(__name__)


@dataclass
class IngestionCycleReport:
    """Outcome counters for one ingestion cycle."""

    devices_polled: int = 0
    devices_failed: List[str] = field(default_factory=list)
    readings_received: int = 0
    readings_persisted: int = 0
    duplicates: int = 0
    rejected: int = 0
    store_failures: int = 0
    cache_updates: int = 0
    stale_readings: int = 0
    per_device_count: Dict[str, int] = field(default_factory=dict)


class IngestionLoop:
    """Fetches telemetry for each configured device once per cycle.

    Failures are contained per device and per reading. A reading is pushed
    into the cache even when the store rejects it, so cache freshness never
    depends on persistence.
    """

    def __init__(
        self,
        gateway: VendorGateway,
        store: ReadingStore,
        cache: ReadingCache,
        device_ids: Iterable[str] = (),
    ) -> None:
        self.gateway = gateway
        self.store = store
        self.cache = cache
        self.device_ids: Sequence[str] = tuple(device_ids)

    def run_cycle(self) -> IngestionCycleReport:
        report = IngestionCycleReport()
        if not self.device_ids:
            logger.debug("No devices configured; ingestion cycle is a no-op.")
            return report

        for device_id in self.device_ids:
            report.devices_polled += 1
            try:
                raw_readings = self.gateway.fetch_readings(device_id)
            except GatewayError as exc:
                report.devices_failed.append(device_id)
                logger.warning(
                    "Failed to fetch readings: %s",
                    exc,
                    extra={"device_id": device_id, "reason": type(exc).__name__},
                )
                continue
            except FatalLoopError:
                raise
            except Exception as exc:  # noqa: BLE001 - contained to this device
                report.devices_failed.append(device_id)
                logger.exception(
                    "Unexpected error fetching readings",
                    extra={"device_id": device_id, "reason": type(exc).__name__},
                )
                continue

            for raw in raw_readings:
                report.readings_received += 1
                self._ingest(device_id, raw, report)

        logger.info(
            "Ingestion cycle complete: %d persisted, %d duplicates, %d rejected, %d devices failed",
            report.readings_persisted,
            report.duplicates,
            report.rejected,
            len(report.devices_failed),
        )
        return report

    def _ingest(self, device_id: str, raw: RawReading, report: IngestionCycleReport) -> None:
        context = {
            "device_id": device_id,
            "sensor_kind": raw.sensor_kind,
            "recorded_at": raw.observed_at,
        }
        try:
            kind = SensorKind(raw.sensor_kind)
            encoded = codec.encode(kind, raw.value)
            reading = SensorReading(
                device_id=device_id,
                sensor_kind=kind,
                recorded_at=raw.observed_at,
                value=encoded,
            )
        except (InvalidValueKind, ValueError) as exc:
            report.rejected += 1
            logger.warning("Skipping reading: %s", exc, extra={**context, "reason": "invalid value"})
            return

        try:
            self.store.insert_reading(reading)
        except DuplicateReadingError:
            report.duplicates += 1
            logger.debug("Reading already stored", extra={**context, "reason": "duplicate"})
        except StoreUnavailableError as exc:
            report.store_failures += 1
            logger.error("Could not persist reading: %s", exc, extra={**context, "reason": "store unavailable"})
        else:
            report.readings_persisted += 1
            report.per_device_count[device_id] = report.per_device_count.get(device_id, 0) + 1

        decoded = codec.decode(reading.sensor_kind, reading.value)
        if self.cache.update(device_id, reading.sensor_kind, decoded, reading.recorded_at):
            report.cache_updates += 1
        else:
            report.stale_readings += 1
            logger.debug("Cached reading is newer; cache unchanged", extra={**context, "reason": "stale"})
