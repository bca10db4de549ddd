"""Tuya Cloud implementation of the vendor gateway."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlencode
from uuid import uuid4

import httpx

from models.errors import (
    GatewayApiError,
    GatewayAuthError,
    GatewayTransportError,
    UnsupportedCommandError,
)
from models.readings import DecodedValue, RawReading, SensorKind

logger = logging.getLogger(__name__)

SIGN_METHOD = "HMAC-SHA256"
TOKEN_REFRESH_MARGIN_SECONDS = 60
_EMPTY_BODY_SHA256 = hashlib.sha256(b"").hexdigest()
_TOKEN_ERROR_CODES = {1010, 1011}

# DP code -> (sensor kind, divisor applied to numeric values)
DP_CODES: Dict[str, Tuple[SensorKind, float]] = {
    "temp_current": (SensorKind.temperature, 1.0),
    "va_temperature": (SensorKind.temperature, 1.0),
    "humidity_value": (SensorKind.humidity, 1.0),
    "va_humidity": (SensorKind.humidity, 1.0),
    "doorcontact_state": (SensorKind.door_open, 1.0),
    "cur_power": (SensorKind.power_consumption, 10.0),
    "switch_1": (SensorKind.relay_state, 1.0),
    "switch": (SensorKind.relay_state, 1.0),
    "temp_set": (SensorKind.temperature_setpoint, 1.0),
}

COMMAND_CODES: Dict[SensorKind, str] = {
    SensorKind.relay_state: "switch_1",
    SensorKind.temperature_setpoint: "temp_set",
}


def sign_request(
    *,
    client_id: str,
    secret: str,
    timestamp_ms: str,
    nonce: str,
    method: str,
    url: str,
    body: bytes = b"",
    access_token: str = "",
) -> str:
    """Compute the Tuya HMAC-SHA256 request signature.

    ``url`` is the path plus its (sorted) query string, e.g.
    ``/v1.0/token?grant_type=1``.
    """
    content_hash = hashlib.sha256(body).hexdigest() if body else _EMPTY_BODY_SHA256
    string_to_sign = "\n".join([method.upper(), content_hash, "", url])
    message = f"{client_id}{access_token}{timestamp_ms}{nonce}{string_to_sign}"
    digest = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256)
    return digest.hexdigest().upper()


@dataclass
class _CachedToken:
    access_token: str
    expires_at: float


class TuyaGateway:
    """Synchronous Tuya OpenAPI client.

    The access token is cached and refreshed shortly before it expires.
    Every request carries the HMAC signature headers. All failures are
    reported as ``GatewayError`` subclasses.
    """

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._client = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)
        self._token: Optional[_CachedToken] = None
        self._token_lock = Lock()

    def close(self) -> None:
        self._client.close()

    def fetch_readings(self, device_id: str) -> List[RawReading]:
        envelope = self._call("GET", f"/v1.0/devices/{device_id}/status", device_id=device_id)
        result = envelope.get("result")
        if not isinstance(result, list):
            raise GatewayApiError(
                "Device status response has no result list.",
                device_id=device_id,
                endpoint="status",
            )
        observed_at = _server_time(envelope)

        readings: List[RawReading] = []
        for dp in result:
            if not isinstance(dp, Mapping):
                continue
            code = dp.get("code")
            mapped = DP_CODES.get(code) if isinstance(code, str) else None
            if mapped is None:
                logger.debug(
                    "Ignoring unknown DP code",
                    extra={"device_id": device_id, "reason": f"code={code!r}"},
                )
                continue
            kind, divisor = mapped
            value = dp.get("value")
            if divisor != 1.0 and isinstance(value, (int, float)) and not isinstance(value, bool):
                value = value / divisor
            readings.append(RawReading(sensor_kind=kind, value=value, observed_at=observed_at))
        return readings

    def send_command(self, device_id: str, kind: SensorKind, value: DecodedValue) -> None:
        kind = SensorKind(kind)
        code = COMMAND_CODES.get(kind)
        if code is None:
            raise UnsupportedCommandError(
                f"{kind.value} is not an actuator channel.", device_id=device_id, endpoint="commands"
            )
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        body = {"commands": [{"code": code, "value": value}]}
        envelope = self._call(
            "POST", f"/v1.0/devices/{device_id}/commands", json_body=body, device_id=device_id
        )
        if envelope.get("result") is False:
            raise GatewayApiError(
                f"Device {device_id} rejected command {code}.",
                device_id=device_id,
                endpoint="commands",
            )

    def _access_token(self) -> str:
        with self._token_lock:
            now = time.time()
            cached = self._token
            if cached is not None and cached.expires_at > now + TOKEN_REFRESH_MARGIN_SECONDS:
                return cached.access_token

            logger.info("Fetching new Tuya access token")
            try:
                envelope = self._request("GET", "/v1.0/token", params={"grant_type": "1"})
            except GatewayApiError as exc:
                raise GatewayAuthError(str(exc), code=exc.code, endpoint="token") from exc
            result = envelope.get("result") or {}
            access_token = result.get("access_token")
            expire_time = result.get("expire_time")
            if not isinstance(access_token, str) or not isinstance(expire_time, (int, float)):
                raise GatewayAuthError("Token response is missing access_token.", endpoint="token")
            self._token = _CachedToken(access_token=access_token, expires_at=now + expire_time)
            return access_token

    def _call(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[Dict[str, Any]] = None,
        device_id: str = "",
    ) -> Dict[str, Any]:
        token = self._access_token()
        try:
            return self._request(
                method, path, json_body=json_body, access_token=token, device_id=device_id
            )
        except GatewayApiError as exc:
            if exc.code in _TOKEN_ERROR_CODES:
                with self._token_lock:
                    self._token = None
                raise GatewayAuthError(
                    str(exc), code=exc.code, device_id=device_id, endpoint=path
                ) from exc
            raise

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        access_token: str = "",
        device_id: str = "",
    ) -> Dict[str, Any]:
        body = json.dumps(json_body, separators=(",", ":")).encode("utf-8") if json_body else b""
        url = path
        if params:
            url = f"{path}?{urlencode(sorted(params.items()))}"
        timestamp_ms = str(int(time.time() * 1000))
        nonce = uuid4().hex
        headers = {
            "client_id": self._client_id,
            "t": timestamp_ms,
            "nonce": nonce,
            "sign_method": SIGN_METHOD,
            "sign": sign_request(
                client_id=self._client_id,
                secret=self._client_secret,
                timestamp_ms=timestamp_ms,
                nonce=nonce,
                method=method,
                url=url,
                body=body,
                access_token=access_token,
            ),
        }
        if access_token:
            headers["access_token"] = access_token
        if body:
            headers["Content-Type"] = "application/json"

        logger.debug("%s %s", method, url, extra={"device_id": device_id or None})
        try:
            response = self._client.request(method, url, content=body or None, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise GatewayTransportError(
                f"HTTP {exc.response.status_code} from {path}: {exc.response.text[:200]}",
                status_code=exc.response.status_code,
                device_id=device_id,
                endpoint=path,
            ) from exc
        except httpx.HTTPError as exc:
            raise GatewayTransportError(
                f"Request to {path} failed: {exc}", device_id=device_id, endpoint=path
            ) from exc

        try:
            envelope = response.json()
        except ValueError as exc:
            raise GatewayTransportError(
                f"Invalid JSON from {path}: {response.text[:200]}",
                status_code=response.status_code,
                device_id=device_id,
                endpoint=path,
            ) from exc
        if not isinstance(envelope, dict):
            raise GatewayTransportError(
                f"Unexpected payload from {path}.", device_id=device_id, endpoint=path
            )
        if not envelope.get("success", False):
            code = envelope.get("code")
            raise GatewayApiError(
                f"Tuya API error: code={code}, msg={envelope.get('msg') or '(no message)'}",
                code=code if isinstance(code, int) else None,
                device_id=device_id,
                endpoint=path,
            )
        return envelope


def _server_time(envelope: Mapping[str, Any]) -> datetime:
    stamp = envelope.get("t")
    if isinstance(stamp, (int, float)) and not isinstance(stamp, bool):
        return datetime.fromtimestamp(stamp / 1000, tz=timezone.utc)
    return datetime.now(timezone.utc)
