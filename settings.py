from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple


_DEVICE_IDS_ENV = "DEVICE_IDS"
_CONTROL_DEVICE_IDS_ENV = "CONTROL_DEVICE_IDS"
_POLL_INTERVAL_ENV = "POLL_INTERVAL_SECONDS"
_CONTROL_INTERVAL_ENV = "CONTROL_INTERVAL_SECONDS"
_VENDOR_BACKEND_ENV = "VENDOR_BACKEND"
_TUYA_BASE_URL_ENV = "TUYA_BASE_URL"
_TUYA_CLIENT_ID_ENV = "TUYA_CLIENT_ID"
_TUYA_CLIENT_SECRET_ENV = "TUYA_CLIENT_SECRET"
_VENDOR_TIMEOUT_ENV = "VENDOR_TIMEOUT_SECONDS"
_STORE_PATH_ENV = "READING_STORE_PATH"
_HYSTERESIS_ENV = "THERMOSTAT_HYSTERESIS"
_FATAL_ON_FAILURE_ENV = "FATAL_ON_LOOP_FAILURE"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_VENDOR_BACKENDS = {"tuya", "mock"}


@dataclass(frozen=True)
class Settings:
    device_ids: Tuple[str, ...]
    control_device_ids: Tuple[str, ...]
    poll_interval: float
    control_interval: float
    vendor_backend: str
    tuya_base_url: str
    tuya_client_id: str
    tuya_client_secret: str
    vendor_timeout: float
    store_path: Optional[str]
    thermostat_hysteresis: float
    fatal_on_loop_failure: bool
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_id_list(name: str) -> Tuple[str, ...]:
    value = os.getenv(name) or ""
    seen: dict[str, None] = {}
    for part in value.split(","):
        candidate = part.strip()
        if candidate:
            seen.setdefault(candidate, None)
    return tuple(seen)


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_non_negative_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        parsed = float(value.strip())
    except ValueError:
        return default
    return parsed if parsed >= 0 else default


def _read_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip().lower()
    if candidate in {"1", "true", "yes", "on"}:
        return True
    if candidate in {"0", "false", "no", "off"}:
        return False
    return default


def _read_vendor_backend(default: str) -> str:
    candidate = _read_str_env(_VENDOR_BACKEND_ENV, default).lower()
    return candidate if candidate in _VENDOR_BACKENDS else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        device_ids=_read_id_list(_DEVICE_IDS_ENV),
        control_device_ids=_read_id_list(_CONTROL_DEVICE_IDS_ENV),
        poll_interval=_read_positive_float(_POLL_INTERVAL_ENV, 60.0),
        control_interval=_read_positive_float(_CONTROL_INTERVAL_ENV, 30.0),
        vendor_backend=_read_vendor_backend("tuya"),
        tuya_base_url=_read_str_env(_TUYA_BASE_URL_ENV, "https://openapi.tuyaeu.com").rstrip("/"),
        tuya_client_id=_read_str_env(_TUYA_CLIENT_ID_ENV, ""),
        tuya_client_secret=_read_str_env(_TUYA_CLIENT_SECRET_ENV, ""),
        vendor_timeout=_read_positive_float(_VENDOR_TIMEOUT_ENV, 10.0),
        store_path=_read_optional_env(_STORE_PATH_ENV, "./tmp/readings.json"),
        thermostat_hysteresis=_read_non_negative_float(_HYSTERESIS_ENV, 0.5),
        fatal_on_loop_failure=_read_bool(_FATAL_ON_FAILURE_ENV, True),
        log_level=_read_log_level("INFO"),
    )
