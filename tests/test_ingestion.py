from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from datastore.reading_store import ReadingStore
from gateway.mock_vendor import MockVendorGateway
from models.errors import FatalLoopError, GatewayApiError, StoreUnavailableError
from models.readings import CacheEntry, RawReading, SensorKind, SensorReading
from services.ingestion import IngestionLoop
from services.reading_cache import ReadingCache

T1 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
T2 = T1 + timedelta(minutes=1)


class UnavailableStore(ReadingStore):
    def insert_reading(self, reading: SensorReading) -> None:
        raise StoreUnavailableError("disk full")


class ExplodingGateway(MockVendorGateway):
    def fetch_readings(self, device_id: str):
        if device_id == "boom":
            raise RuntimeError("driver crashed")
        return super().fetch_readings(device_id)


def _loop(gateway: MockVendorGateway, *device_ids: str, store: ReadingStore | None = None) -> IngestionLoop:
    return IngestionLoop(
        gateway=gateway,
        store=store if store is not None else ReadingStore(name="test"),
        cache=ReadingCache(),
        device_ids=device_ids,
    )


def test_cycle_persists_and_caches_readings() -> None:
    gateway = MockVendorGateway()
    gateway.queue_readings(
        "D1",
        RawReading(SensorKind.temperature, 21.45, T1),
        RawReading(SensorKind.relay_state, True, T1),
    )
    loop = _loop(gateway, "D1")

    report = loop.run_cycle()

    assert report.readings_persisted == 2
    assert report.per_device_count == {"D1": 2}
    assert [r.value for r in loop.store.query_range("D1", SensorKind.temperature)] == [2145]
    assert [r.value for r in loop.store.query_range("D1", SensorKind.relay_state)] == [1]
    assert loop.cache.get("D1", SensorKind.temperature) == CacheEntry(21.45, T1)
    assert loop.cache.get("D1", SensorKind.relay_state) == CacheEntry(True, T1)


def test_later_cycle_adds_to_snapshot_without_touching_older_entries() -> None:
    gateway = MockVendorGateway()
    gateway.queue_readings(
        "D1",
        RawReading(SensorKind.temperature, 21.45, T1),
        RawReading(SensorKind.door_open, True, T1),
    )
    gateway.queue_readings("D1", RawReading(SensorKind.relay_state, False, T2))
    loop = _loop(gateway, "D1")

    first = loop.run_cycle()
    second = loop.run_cycle()

    assert first.readings_persisted == 2
    assert [r.value for r in loop.store.query_range("D1", SensorKind.door_open)] == [1]
    assert second.readings_persisted == 1
    assert loop.cache.latest_snapshot() == {
        ("D1", SensorKind.temperature): (21.45, T1),
        ("D1", SensorKind.door_open): (True, T1),
        ("D1", SensorKind.relay_state): (False, T2),
    }


def test_repeated_readings_are_duplicates_and_new_ones_persist() -> None:
    gateway = MockVendorGateway()
    gateway.queue_readings(
        "D1",
        RawReading(SensorKind.temperature, 21.45, T1),
        RawReading(SensorKind.relay_state, True, T1),
    )
    gateway.queue_readings(
        "D1",
        RawReading(SensorKind.temperature, 21.45, T1),
        RawReading(SensorKind.relay_state, True, T1),
        RawReading(SensorKind.relay_state, False, T2),
    )
    loop = _loop(gateway, "D1")

    loop.run_cycle()
    report = loop.run_cycle()

    assert report.duplicates == 2
    assert report.readings_persisted == 1
    assert [r.value for r in loop.store.query_range("D1", SensorKind.relay_state)] == [1, 0]
    assert loop.cache.get("D1", SensorKind.relay_state) == CacheEntry(False, T2)
    assert len(loop.store) == 3


def test_failed_device_does_not_block_others() -> None:
    gateway = MockVendorGateway()
    gateway.queue_readings("D1", RawReading(SensorKind.temperature, 20.0, T1))
    gateway.queue_failure("D2")
    gateway.queue_readings("D3", RawReading(SensorKind.humidity, 55.5, T1))
    loop = _loop(gateway, "D1", "D2", "D3")

    report = loop.run_cycle()

    assert report.devices_polled == 3
    assert report.devices_failed == ["D2"]
    assert report.per_device_count == {"D1": 1, "D3": 1}
    assert loop.cache.get("D1", SensorKind.temperature) is not None
    assert loop.cache.get("D3", SensorKind.humidity) == CacheEntry(55.5, T1)
    assert loop.cache.get_device("D2") == {}


def test_api_errors_and_unexpected_exceptions_are_contained() -> None:
    gateway = ExplodingGateway()
    gateway.queue_failure("D1", GatewayApiError("device offline", code=2001, device_id="D1"))
    gateway.queue_readings("D2", RawReading(SensorKind.door_open, False, T1))
    loop = _loop(gateway, "D1", "boom", "D2")

    report = loop.run_cycle()

    assert report.devices_failed == ["D1", "boom"]
    assert loop.cache.get("D2", SensorKind.door_open) == CacheEntry(False, T1)


def test_duplicate_still_refreshes_cache() -> None:
    store = ReadingStore(name="test")
    store.insert_reading(
        SensorReading(device_id="D1", sensor_kind=SensorKind.temperature, recorded_at=T1, value=2145)
    )
    gateway = MockVendorGateway()
    gateway.queue_readings("D1", RawReading(SensorKind.temperature, 21.45, T1))
    loop = _loop(gateway, "D1", store=store)

    report = loop.run_cycle()

    assert report.duplicates == 1
    assert report.readings_persisted == 0
    assert loop.cache.get("D1", SensorKind.temperature) == CacheEntry(21.45, T1)


def test_store_outage_still_refreshes_cache() -> None:
    gateway = MockVendorGateway()
    gateway.queue_readings("D1", RawReading(SensorKind.temperature, 19.0, T1))
    loop = _loop(gateway, "D1", store=UnavailableStore(name="test"))

    report = loop.run_cycle()

    assert report.store_failures == 1
    assert report.readings_persisted == 0
    assert loop.cache.get("D1", SensorKind.temperature) == CacheEntry(19.0, T1)


def test_invalid_values_are_skipped() -> None:
    gateway = MockVendorGateway()
    gateway.queue_readings(
        "D1",
        RawReading(SensorKind.door_open, 1, T1),
        RawReading(SensorKind.temperature, True, T1),
        RawReading("pressure", 1013.0, T1),  # type: ignore[arg-type]
        RawReading(SensorKind.humidity, 40.0, T1),
    )
    loop = _loop(gateway, "D1")

    report = loop.run_cycle()

    assert report.readings_received == 4
    assert report.rejected == 3
    assert report.readings_persisted == 1
    assert loop.cache.get("D1", SensorKind.door_open) is None
    assert loop.cache.get("D1", SensorKind.temperature) is None
    assert len(loop.store) == 1


def test_older_reading_is_stored_but_not_cached() -> None:
    gateway = MockVendorGateway()
    gateway.queue_readings("D1", RawReading(SensorKind.temperature, 22.0, T2))
    gateway.queue_readings("D1", RawReading(SensorKind.temperature, 18.0, T1))
    loop = _loop(gateway, "D1")

    loop.run_cycle()
    report = loop.run_cycle()

    assert report.readings_persisted == 1
    assert report.stale_readings == 1
    assert loop.cache.get("D1", SensorKind.temperature) == CacheEntry(22.0, T2)
    assert [r.value for r in loop.store.query_range("D1", SensorKind.temperature)] == [1800, 2200]


def test_no_devices_is_a_no_op() -> None:
    gateway = MockVendorGateway()
    loop = _loop(gateway)

    report = loop.run_cycle()

    assert report.devices_polled == 0
    assert gateway.fetch_calls == []


def test_fatal_error_propagates() -> None:
    class FatalGateway(MockVendorGateway):
        def fetch_readings(self, device_id: str):
            raise FatalLoopError("credentials revoked")

    loop = _loop(FatalGateway(), "D1")

    with pytest.raises(FatalLoopError):
        loop.run_cycle()


def test_reading_without_usable_timestamp_is_rejected_and_cycle_continues() -> None:
    gateway = MockVendorGateway()
    gateway.queue_readings(
        "D1",
        RawReading(SensorKind.temperature, 20.0, None),  # type: ignore[arg-type]
        RawReading(SensorKind.humidity, 50.0, "2024-01-01T12:00:00Z"),  # type: ignore[arg-type]
        RawReading(SensorKind.door_open, True, T1),
    )
    gateway.queue_readings("D2", RawReading(SensorKind.temperature, 21.0, T1))
    loop = _loop(gateway, "D1", "D2")

    report = loop.run_cycle()

    assert report.rejected == 2
    assert report.readings_persisted == 2
    assert loop.cache.get("D1", SensorKind.temperature) is None
    assert loop.cache.get("D1", SensorKind.door_open) == CacheEntry(True, T1)
    assert loop.cache.get("D2", SensorKind.temperature) == CacheEntry(21.0, T1)
