"""In-memory store of the most recent reading per (device_id, sensor kind)."""

from __future__ import annotations

from datetime import datetime
from threading import Lock
from typing import Dict, Optional, Tuple

from models.readings import CacheEntry, DecodedValue, SensorKind

CacheKey = Tuple[str, SensorKind]


class ReadingCache:
    """Latest-value projection shared by the ingestion and control loops.

    The ingestion loop is the only writer. Entries are immutable, so a reader
    always sees either the old or the new (value, timestamp) pair. The lock
    only guards the dictionary itself and is never held across I/O.
    """

    def __init__(self) -> None:
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._lock = Lock()

    def update(
        self,
        device_id: str,
        kind: SensorKind,
        value: DecodedValue,
        observed_at: datetime,
    ) -> bool:
        """Store ``value`` unless the cached entry is at least as recent.

        Returns True when the entry was replaced.
        """
        key = (device_id, SensorKind(kind))
        entry = CacheEntry(value=value, observed_at=observed_at)
        with self._lock:
            current = self._entries.get(key)
            if current is not None and observed_at <= current.observed_at:
                return False
            self._entries[key] = entry
            return True

    def get(self, device_id: str, kind: SensorKind) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get((device_id, SensorKind(kind)))

    def get_all(self) -> Dict[CacheKey, CacheEntry]:
        """Return a point-in-time copy of every cached entry."""
        with self._lock:
            return dict(self._entries)

    def get_device(self, device_id: str) -> Dict[SensorKind, CacheEntry]:
        with self._lock:
            return {
                kind: entry
                for (entry_device, kind), entry in self._entries.items()
                if entry_device == device_id
            }

    def device_ids(self) -> list[str]:
        with self._lock:
            return sorted({device_id for device_id, _ in self._entries})

    def latest_snapshot(self) -> Dict[CacheKey, Tuple[DecodedValue, datetime]]:
        """Snapshot in the shape consumed by the query API."""
        return {key: (entry.value, entry.observed_at) for key, entry in self.get_all().items()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
