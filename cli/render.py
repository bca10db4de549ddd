from __future__ import annotations

from typing import Any, Dict, Iterable

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_latest(payload: Dict[str, Any]) -> None:
    echo_heading("Latest Readings")
    readings = payload.get("readings") or []
    if not readings:
        typer.echo("No readings observed yet.")
        return

    current_device = None
    for reading in readings:
        device_id = reading.get("device_id")
        if device_id != current_device:
            current_device = device_id
            typer.echo(f"{device_id}:")
        typer.echo(
            f"  - {reading.get('sensor_kind')}: {reading.get('value')} "
            f"@ {reading.get('observed_at')}"
        )


def render_reading(payload: Dict[str, Any]) -> None:
    echo_heading("Latest Reading")
    echo_key_values(
        [
            ("device_id", payload.get("device_id")),
            ("sensor_kind", payload.get("sensor_kind")),
            ("value", payload.get("value")),
            ("observed_at", payload.get("observed_at")),
        ]
    )


def render_history(payload: Dict[str, Any]) -> None:
    echo_heading("Reading History")
    echo_key_values(
        [
            ("device_id", payload.get("device_id")),
            ("sensor_kind", payload.get("sensor_kind")),
            ("start", payload.get("start") or "-"),
            ("end", payload.get("end") or "-"),
        ]
    )

    readings = payload.get("readings") or []
    typer.echo()
    if not readings:
        typer.echo("No readings stored for this range.")
        return
    for reading in readings:
        typer.echo(
            f"  - {reading.get('recorded_at')}: {reading.get('decoded_value')} "
            f"(encoded {reading.get('value')})"
        )
    typer.echo()
    typer.echo(f"{len(readings)} reading(s)")
