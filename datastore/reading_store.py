from __future__ import annotations
import json
import logging
import os
from bisect import insort
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, Iterable, List, Optional, Set, Tuple

from pydantic import ValidationError

from app.schemas import StoredReading
from models.errors import DuplicateReadingError, StoreUnavailableError
from models.readings import SensorKind, SensorReading
from settings import get_settings

logger = logging.getLogger(__name__)

SeriesKey = Tuple[str, SensorKind]


def _utc(value: datetime) -> datetime:
    return value.astimezone(timezone.utc)


class ReadingStore:
    """Append-only reading store backed by a JSON Lines file.

    Rows are unique on ``(device_id, sensor_kind, recorded_at)``. Each insert
    is written and fsynced before it returns, so an accepted reading survives
    a restart. Nothing is ever deleted.
    """

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self.persistence_path = persistence_path
        self._series: Dict[SeriesKey, List[Tuple[datetime, SensorReading]]] = {}
        self._keys: Set[Tuple[str, SensorKind, datetime]] = set()
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def insert_reading(self, reading: SensorReading) -> None:
        key = (reading.device_id, reading.sensor_kind, _utc(reading.recorded_at))
        with self._lock:
            if key in self._keys:
                raise DuplicateReadingError(
                    f"Reading for {reading.device_id!r}/{reading.sensor_kind.value} "
                    f"at {reading.recorded_at.isoformat()} already exists."
                )
            try:
                self._append(reading)
            except OSError as exc:
                raise StoreUnavailableError(
                    f"Could not persist reading to {self.persistence_path}: {exc}"
                ) from exc
            self._index(reading)

    def query_range(
        self,
        device_id: str,
        kind: SensorKind,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[SensorReading]:
        """Return readings in ``[start, end]`` ordered by ``recorded_at`` ascending."""
        lower = _utc(start) if start is not None else None
        upper = _utc(end) if end is not None else None
        with self._lock:
            series = list(self._series.get((device_id, SensorKind(kind)), ()))
        return [
            reading
            for recorded_at, reading in series
            if (lower is None or recorded_at >= lower) and (upper is None or recorded_at <= upper)
        ]

    def latest(self, device_id: str, kind: SensorKind) -> Optional[SensorReading]:
        with self._lock:
            series = self._series.get((device_id, SensorKind(kind)))
            if not series:
                return None
            return series[-1][1]

    def scan(self) -> list[SensorReading]:
        """Return every stored reading."""

        with self._lock:
            return [reading for series in self._series.values() for _, reading in series]

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

    def _index(self, reading: SensorReading) -> None:
        recorded_at = _utc(reading.recorded_at)
        self._keys.add((reading.device_id, reading.sensor_kind, recorded_at))
        series = self._series.setdefault((reading.device_id, reading.sensor_kind), [])
        insort(series, (recorded_at, reading), key=lambda item: item[0])

    def _append(self, reading: SensorReading) -> None:
        if not self.persistence_path:
            return
        line = json.dumps(
            StoredReading.from_reading(reading).model_dump(mode="json"), sort_keys=True
        )
        with self.persistence_path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
            handle.flush()
            os.fsync(handle.fileno())

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            lines: Iterable[bytes] = self.persistence_path.read_bytes().splitlines()
        except OSError as exc:
            logger.error(
                "Could not read reading store %s; starting empty: %s",
                self.persistence_path,
                exc,
                extra={"reason": type(exc).__name__},
            )
            lines = []

        for line_number, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                row = StoredReading.model_validate(json.loads(line.decode("utf-8")))
                reading = row.to_reading()
            except (json.JSONDecodeError, ValidationError, ValueError):
                logger.warning(
                    "Skipping unreadable row in reading store",
                    extra={"row_number": line_number, "reason": "invalid row"},
                )
                continue
            key = (reading.device_id, reading.sensor_kind, _utc(reading.recorded_at))
            if key in self._keys:
                continue
            self._index(reading)


@lru_cache
def build_default_store(
    name: Optional[str] = None,
    path: Optional[str] = None,
) -> ReadingStore:
    settings = get_settings()
    store_path = settings.store_path if path is None else path
    persistence = Path(store_path) if store_path else None
    return ReadingStore(name=name or "sensor_readings", persistence_path=persistence)
