from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the telemetry query API."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    def get_latest(self) -> Dict[str, Any]:
        return self._get("/sensors/latest")

    def get_sensor_latest(self, device_id: str, sensor_kind: str) -> Dict[str, Any]:
        return self._get(
            f"/sensors/{device_id}/{sensor_kind}/latest",
            not_found=f"No reading observed for {device_id}/{sensor_kind}.",
        )

    def get_history(
        self,
        device_id: str,
        sensor_kind: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        params = {}
        if start is not None:
            params["start"] = start.isoformat()
        if end is not None:
            params["end"] = end.isoformat()
        return self._get(f"/sensors/{device_id}/{sensor_kind}", params=params)

    def _get(
        self,
        path: str,
        params: Optional[Dict[str, str]] = None,
        not_found: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            response = self._client.get(path, params=params)
            if response.status_code == 404 and not_found:
                raise typer.BadParameter(not_found)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            typer.secho(f"Could not reach {self._config.base_url}: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1) from exc
        return response.json()

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
