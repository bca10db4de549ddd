from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_history, render_latest, render_reading
from logging_config import configure_logging
from models.readings import SensorKind
from services.supervisor import build_default_supervisor


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for querying and running the smart home telemetry service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


def _parse_instant(value: Optional[str], name: str) -> Optional[datetime]:
    if value is None:
        return None
    candidate = value.strip()
    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise typer.BadParameter(f"{name} must be an ISO 8601 timestamp.") from exc
    if parsed.tzinfo is None:
        raise typer.BadParameter(f"{name} must include a timezone offset.")
    return parsed


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Telemetry API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each API request.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("latest")
def latest_command(
    ctx: typer.Context,
    device_id: Optional[str] = typer.Argument(None, help="Restrict to one device."),
    sensor_kind: Optional[SensorKind] = typer.Argument(None, help="Restrict to one sensor kind."),
) -> None:
    """Show the most recent cached readings."""
    state = _get_state(ctx)
    if device_id is not None and sensor_kind is not None:
        render_reading(state.client.get_sensor_latest(device_id, sensor_kind.value))
        return

    payload = state.client.get_latest()
    if device_id is not None:
        readings = [r for r in payload.get("readings") or [] if r.get("device_id") == device_id]
        payload = {"readings": readings, "count": len(readings)}
    render_latest(payload)


@app.command("history")
def history_command(
    ctx: typer.Context,
    device_id: str = typer.Argument(..., help="Device identifier."),
    sensor_kind: SensorKind = typer.Argument(..., help="Sensor kind."),
    start: Optional[str] = typer.Option(None, "--start", help="Inclusive lower bound (ISO 8601)."),
    end: Optional[str] = typer.Option(None, "--end", help="Inclusive upper bound (ISO 8601)."),
) -> None:
    """List stored readings for one device and sensor kind."""
    state = _get_state(ctx)
    payload = state.client.get_history(
        device_id,
        sensor_kind.value,
        start=_parse_instant(start, "--start"),
        end=_parse_instant(end, "--end"),
    )
    render_history(payload)


@app.command("run")
def run_command(
    once: bool = typer.Option(
        False,
        "--once/--forever",
        help="Run a single ingestion and control cycle instead of the schedulers.",
    ),
) -> None:
    """Run the ingestion and control loops without the HTTP API."""
    configure_logging()
    supervisor = build_default_supervisor()
    if not once:
        raise typer.Exit(code=supervisor.run_forever())

    try:
        ingestion = supervisor.ingestion.run_cycle()
        control = supervisor.control.run_cycle()
    finally:
        supervisor.close()
    typer.echo(
        f"ingestion: {ingestion.readings_persisted} persisted, {ingestion.duplicates} duplicates, "
        f"{ingestion.rejected} rejected, {len(ingestion.devices_failed)} device(s) failed"
    )
    typer.echo(
        f"control: {control.devices_evaluated} evaluated, {len(control.devices_skipped)} skipped, "
        f"{len(control.commands_sent)} command(s) sent, {len(control.commands_failed)} failed"
    )
