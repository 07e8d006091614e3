"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import typer

from coretemp.core.control_point import opcode_name
from coretemp.core.decoder import decode_sample
from coretemp.core.errors import CoretempError
from coretemp.core.events import (
    CommandCompleted,
    DiscoveryConverged,
    HrmAdded,
    SampleDecoded,
    ScanFailed,
    ScanTimedOut,
    SessionError,
    StateChanged,
)
from coretemp.core.model import Sample
from coretemp.core.service import CoretempService

app = typer.Typer(help="CORE body-temperature sensor monitor over BLE")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level"),
) -> None:
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_service(config: Path | None) -> CoretempService:
    service = CoretempService(settings_path=config)
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


def celsius_to_fahrenheit(value: float) -> float:
    return value * 9.0 / 5.0 + 32.0


def format_sample(sample: Sample, *, fahrenheit: bool = False) -> str:
    unit = "°F" if fahrenheit else "°C"

    def _show(value: float) -> float:
        return celsius_to_fahrenheit(value) if fahrenheit else value

    text = f"Core: {_show(sample.core_c):.2f} {unit}"
    if sample.skin_c is not None:
        text += f", Skin: {_show(sample.skin_c):.2f} {unit}"
    if sample.heart_rate is not None:
        text += f", HR: {sample.heart_rate}"
    if sample.heat_strain_index is not None:
        text += f", HSI: {sample.heat_strain_index}"
    return text


def _event_printer(fahrenheit: bool):
    def _print(event: Any) -> None:
        if isinstance(event, SampleDecoded):
            typer.echo(f"[{event.role.value}] {format_sample(event.sample, fahrenheit=fahrenheit)}")
        elif isinstance(event, StateChanged):
            typer.echo(f"[{event.role.value}] {event.address}: {event.new.value}")
        elif isinstance(event, CommandCompleted) and not event.outcome.succeeded:
            typer.echo(
                f"[{event.role.value}] {opcode_name(event.outcome.opcode)} failed "
                f"(result 0x{event.outcome.result_code:02x})",
                err=True,
            )
        elif isinstance(event, DiscoveryConverged):
            typer.echo(f"[{event.role.value}] HRM scan complete, total={event.total}")
        elif isinstance(event, HrmAdded):
            typer.echo(f"[{event.role.value}] Added HRM {event.hrm_address}")
        elif isinstance(event, SessionError):
            typer.echo(f"[{event.role.value}] {type(event.error).__name__}: {event.error}", err=True)
        elif isinstance(event, ScanTimedOut):
            typer.echo(f"[{event.role.value}] No sensor found before scan timeout", err=True)
        elif isinstance(event, ScanFailed):
            typer.echo(f"[{event.role.value}] {event.error}", err=True)

    return _print


@app.command("scan")
def scan_devices(
    timeout: float | None = typer.Option(None, "--timeout", help="Scan duration in seconds"),
    config: Path | None = typer.Option(None, "--config", help="Settings YAML file"),
) -> None:
    """List nearby CORE sensors."""
    try:
        service = _build_service(config)
        devices = asyncio.run(service.list_devices(timeout))
        if not devices:
            typer.echo("No CORE sensors found")
            return
        for device in devices:
            typer.echo(f"{device.address} {device.name}")
    except CoretempError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("monitor")
def monitor(
    address: str | None = typer.Option(None, "--address", help="Connect to this address instead of scanning"),
    second: bool = typer.Option(False, "--second", help="Also scan for a second sensor"),
    csv_path: Path | None = typer.Option(None, "--csv", help="Append readings to this CSV file"),
    duration: float | None = typer.Option(None, "--duration", help="Stop after N seconds"),
    fahrenheit: bool = typer.Option(False, "--fahrenheit", help="Display temperatures in °F"),
    config: Path | None = typer.Option(None, "--config", help="Settings YAML file"),
) -> None:
    """Connect to CORE sensor(s) and stream readings until disconnected."""
    try:
        service = _build_service(config)
        result = asyncio.run(
            service.monitor(
                on_event=_event_printer(fahrenheit),
                address=address,
                secondary=second,
                csv_path=csv_path,
                duration_s=duration,
            )
        )
    except KeyboardInterrupt:
        typer.echo("Stopped")
        return
    except CoretempError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    for status in result.statuses:
        if status.address is None:
            continue
        line = f"{status.role.value}: {status.address} {status.state.value}"
        if status.last_error is not None:
            line += f" (last error: {status.last_error})"
        typer.echo(line)
    if result.rows_written:
        typer.echo(f"Wrote {result.rows_written} readings")
    if all(status.address is None for status in result.statuses):
        typer.echo("Error: No CORE sensor found", err=True)
        raise typer.Exit(code=1)


@app.command("decode")
def decode(
    payload: str = typer.Argument(..., help="Temperature notification as hex"),
    fahrenheit: bool = typer.Option(False, "--fahrenheit", help="Display temperatures in °F"),
) -> None:
    """Decode a raw temperature notification payload."""
    try:
        data = bytes.fromhex(payload.replace(" ", "").replace(":", ""))
    except ValueError:
        typer.echo(f"Error: '{payload}' is not valid hex", err=True)
        raise typer.Exit(code=1) from None
    try:
        sample = decode_sample(data)
    except CoretempError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    typer.echo(format_sample(sample, fahrenheit=fahrenheit))
    typer.echo(
        f"flags=0x{sample.flags:02x} core_res={sample.core_reserved} "
        f"quality={sample.quality} hr={sample.heart_rate} hsi={sample.heat_strain_index}"
    )


@app.command("config")
def show_config(
    config: Path | None = typer.Option(None, "--config", help="Settings YAML file"),
) -> None:
    """Show the effective settings and where they were loaded from."""
    try:
        service = _build_service(config)
    except CoretempError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    for source in service.settings_sources:
        typer.echo(f"# {source}")
    for field, value in vars(service.settings).items():
        typer.echo(f"{field}: {value}")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
