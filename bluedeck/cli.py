"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer

from bluedeck.api import Client, default_transport_factory
from bluedeck.console import Console, format_device, format_request, run_console
from bluedeck.core.config import Config, load_config
from bluedeck.core.errors import BluedeckError
from bluedeck.core.model import PendingCredentialRequest
from bluedeck.core.session import AppContext, Session
from bluedeck.transports.rfkill import RfkillSwitch

app = typer.Typer(help="Manage Bluetooth adapters and devices through BlueZ")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class _State:
    config: Config = Config()


_state = _State()


def _configure_logging(config: Config, *, verbose: bool, log_file: Path | None) -> None:
    level_name = "DEBUG" if verbose else (config.log_level or "WARNING")
    target = log_file or config.log_file
    handlers: list[logging.Handler]
    if target is not None:
        target.parent.mkdir(parents=True, exist_ok=True)
        handlers = [logging.FileHandler(target, encoding="utf-8")]
    else:
        handlers = [logging.StreamHandler()]
    logging.basicConfig(level=getattr(logging, level_name.upper()), format=LOG_FORMAT, handlers=handlers, force=True)


def _build_client() -> Client:
    return Client(config=_state.config)


def _fail(exc: BluedeckError) -> typer.Exit:
    typer.echo(f"Error: {exc}", err=True)
    return typer.Exit(code=1)


def _parse_on_off(value: str) -> bool:
    lowered = value.lower()
    if lowered not in ("on", "off"):
        raise typer.BadParameter("expected 'on' or 'off'")
    return lowered == "on"


@app.callback()
def main(
    config: Path | None = typer.Option(None, "--config", help="Path to config.yaml"),
    log_file: Path | None = typer.Option(None, "--log-file", help="Write logs to this file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
) -> None:
    """Bluetooth device manager for the terminal."""
    try:
        _state.config = load_config(config)
    except BluedeckError as exc:
        raise _fail(exc) from None
    _configure_logging(_state.config, verbose=verbose, log_file=log_file)


@app.command("adapters")
def list_adapters() -> None:
    """List Bluetooth adapters."""
    try:
        adapters = _build_client().list_adapters()
    except BluedeckError as exc:
        raise _fail(exc) from None
    if not adapters:
        typer.echo("No Bluetooth adapters found")
        return
    for adapter in adapters:
        power = "on" if adapter.powered else "off"
        scanning = " scanning" if adapter.scanning else ""
        typer.echo(f"{adapter.short_id} {adapter.address} {adapter.name} power={power}{scanning}")


@app.command("devices")
def list_devices(
    show_all: bool = typer.Option(False, "--all", help="Include nearby unpaired devices"),
) -> None:
    """List paired devices, and nearby ones with --all."""
    try:
        devices = _build_client().list_devices(include_unpaired=show_all)
    except BluedeckError as exc:
        raise _fail(exc) from None
    if not devices:
        typer.echo("No Bluetooth devices found")
        return
    for device in devices:
        typer.echo(format_device(device).strip())


@app.command("power")
def power(
    state: str = typer.Argument(..., help="on or off"),
    adapter: str | None = typer.Option(None, "--adapter", help="Adapter name or address"),
) -> None:
    """Power an adapter on or off (also toggles the radio kill switch)."""
    on = _parse_on_off(state)
    try:
        target = _build_client().set_power(on, adapter_hint=adapter)
    except BluedeckError as exc:
        raise _fail(exc) from None
    typer.echo(f"Powered {'on' if on else 'off'} {target.short_id}")


@app.command("scan")
def scan(
    duration: float = typer.Option(10.0, "--duration", min=0.0, help="Seconds to scan for"),
    adapter: str | None = typer.Option(None, "--adapter", help="Adapter name or address"),
) -> None:
    """Scan for nearby devices and list them."""
    try:
        devices = _build_client().scan(duration, adapter_hint=adapter)
    except BluedeckError as exc:
        raise _fail(exc) from None
    if not devices:
        typer.echo("No nearby devices found")
        return
    for device in devices:
        rssi = f" rssi={device.rssi}" if device.rssi is not None else ""
        typer.echo(f"{format_device(device).strip()}{rssi}")


def _prompt_credential(request: PendingCredentialRequest) -> str:
    return typer.prompt(format_request(request))


@app.command("pair")
def pair(device: str = typer.Argument(..., help="MAC or partial name")) -> None:
    """Pair with a device and mark it trusted."""
    try:
        target = _build_client().pair(device, _prompt_credential)
    except BluedeckError as exc:
        raise _fail(exc) from None
    typer.echo(f"Paired {target.address} ({target.display_name})")


@app.command("connect")
def connect(device: str = typer.Argument(..., help="MAC or partial name")) -> None:
    """Connect a device."""
    try:
        target = _build_client().connect(device)
    except BluedeckError as exc:
        raise _fail(exc) from None
    typer.echo(f"Connected {target.address} ({target.display_name})")


@app.command("disconnect")
def disconnect(device: str = typer.Argument(..., help="MAC or partial name")) -> None:
    """Disconnect a device."""
    try:
        target = _build_client().disconnect(device)
    except BluedeckError as exc:
        raise _fail(exc) from None
    typer.echo(f"Disconnected {target.address} ({target.display_name})")


@app.command("trust")
def trust(device: str = typer.Argument(..., help="MAC or partial name")) -> None:
    """Mark a device trusted."""
    try:
        target = _build_client().trust(device)
    except BluedeckError as exc:
        raise _fail(exc) from None
    typer.echo(f"Trusted {target.address} ({target.display_name})")


@app.command("forget")
def forget(device: str = typer.Argument(..., help="MAC or partial name")) -> None:
    """Remove a device from its adapter."""
    try:
        target = _build_client().forget(device)
    except BluedeckError as exc:
        raise _fail(exc) from None
    typer.echo(f"Forgot {target.address} ({target.display_name})")


async def _watch(config: Config) -> None:
    transport = await default_transport_factory()
    try:
        session = Session(AppContext(transport=transport, radio=RfkillSwitch(), config=config))
        await run_console(session, Console(session, out=typer.echo))
    finally:
        await transport.close()


@app.command("watch")
def watch() -> None:
    """Interactive session: live device view plus line commands on stdin."""
    try:
        asyncio.run(_watch(_state.config))
    except BluedeckError as exc:
        raise _fail(exc) from None
    except KeyboardInterrupt:
        raise typer.Exit(code=130) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
