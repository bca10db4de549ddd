"""HTTP route definitions for the service."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.schemas import HistoryOut, LatestReadingOut, LatestSnapshotOut, SensorReadingOut
from datastore.reading_store import ReadingStore, build_default_store
from models.readings import SensorKind
from services.supervisor import Supervisor, build_default_supervisor

router = APIRouter()


def get_supervisor() -> Supervisor:
    return build_default_supervisor()


def get_store() -> ReadingStore:
    return build_default_store()


@router.get(
    "/sensors/latest",
    response_model=LatestSnapshotOut,
    summary="Latest cached reading per (device, sensor kind).",
)
async def get_latest_readings(
    supervisor: Supervisor = Depends(get_supervisor),
) -> LatestSnapshotOut:
    snapshot = supervisor.cache.latest_snapshot()
    readings = [
        LatestReadingOut(device_id=device_id, sensor_kind=kind, value=value, observed_at=observed_at)
        for (device_id, kind), (value, observed_at) in sorted(
            snapshot.items(), key=lambda item: (item[0][0], item[0][1].value)
        )
    ]
    return LatestSnapshotOut(readings=readings, count=len(readings))


@router.get(
    "/sensors/{device_id}/{sensor_kind}/latest",
    response_model=LatestReadingOut,
    summary="Latest cached reading for one device and sensor kind.",
)
async def get_sensor_latest(
    device_id: str,
    sensor_kind: SensorKind,
    supervisor: Supervisor = Depends(get_supervisor),
) -> LatestReadingOut:
    entry = supervisor.cache.get(device_id, sensor_kind)
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No reading observed for {device_id}/{sensor_kind.value}.",
        )
    return LatestReadingOut(
        device_id=device_id,
        sensor_kind=sensor_kind,
        value=entry.value,
        observed_at=entry.observed_at,
    )


@router.get(
    "/sensors/{device_id}/{sensor_kind}",
    response_model=HistoryOut,
    summary="Stored readings for one device and sensor kind, oldest first.",
)
async def get_sensor_readings(
    device_id: str,
    sensor_kind: SensorKind,
    start: Optional[datetime] = Query(None, description="Inclusive lower bound (RFC 3339)."),
    end: Optional[datetime] = Query(None, description="Inclusive upper bound (RFC 3339)."),
    from_: Optional[datetime] = Query(None, alias="from", description="Alias of start."),
    to: Optional[datetime] = Query(None, description="Alias of end."),
    store: ReadingStore = Depends(get_store),
) -> HistoryOut:
    start = start if start is not None else from_
    end = end if end is not None else to
    for name, bound in (("start", start), ("end", end)):
        if bound is not None and bound.tzinfo is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"{name} must include a timezone offset.",
            )
    if start is not None and end is not None and start > end:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start must not be after end.",
        )
    readings = store.query_range(device_id, sensor_kind, start=start, end=end)
    return HistoryOut(
        device_id=device_id,
        sensor_kind=sensor_kind,
        start=start,
        end=end,
        readings=[SensorReadingOut.from_reading(reading) for reading in readings],
    )


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck(
    supervisor: Supervisor = Depends(get_supervisor),
) -> Dict[str, Any]:
    loops = {worker.name: worker.is_running for worker in supervisor.workers}
    healthy = not supervisor.failed
    return {"status": "ok" if healthy else "degraded", "loops": loops}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
