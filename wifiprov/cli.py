"""Typer CLI entrypoint."""

from __future__ import annotations

import logging

import typer

from wifiprov.api import Client
from wifiprov.core.errors import ProvisioningError
from wifiprov.core.model import DeviceFound, SessionEvent, StatusChanged

app = typer.Typer(help="Provision Wi-Fi credentials onto headless devices over BLE")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_client(profile: str | None) -> Client:
    client = Client(profile_id=profile)
    for warning in getattr(client, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return client


@app.command("profiles")
def list_profiles() -> None:
    """List available provisioning profiles."""
    try:
        client = _build_client(None)
        for profile in client.list_profiles():
            typer.echo(f"{profile.id}: {profile.name}")
            typer.echo(f"  service: {profile.descriptor.service_uuid}")
            typer.echo(f"  ssid: {profile.descriptor.ssid_char_uuid}")
            typer.echo(f"  password: {profile.descriptor.password_char_uuid}")
    except ProvisioningError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("scan")
def scan(
    timeout: float | None = typer.Option(None, "--timeout", help="Scan window in seconds"),
    profile: str | None = typer.Option(None, "--profile", help="Profile ID"),
) -> None:
    """List devices advertising the provisioning service."""
    try:
        client = _build_client(profile)
        try:
            devices = client.scan(timeout_s=timeout)
        finally:
            client.close()
        if not devices:
            typer.echo("No provisionable devices found")
            return
        for device in devices:
            typer.echo(f"{device.identifier} {device.label}")
    except ProvisioningError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("provision")
def provision(
    ssid: str = typer.Option(..., "--ssid", help="Wi-Fi network name"),
    password: str = typer.Option(
        ...,
        "--password",
        prompt=True,
        hide_input=True,
        help="Wi-Fi password (prompted when omitted)",
    ),
    device: str | None = typer.Option(None, "--device", help="Address or partial name"),
    profile: str | None = typer.Option(None, "--profile", help="Profile ID"),
    scan_timeout: float | None = typer.Option(None, "--scan-timeout", help="Scan window in seconds"),
) -> None:
    """Send Wi-Fi credentials to a discovered device."""

    def _report(event: SessionEvent) -> None:
        if isinstance(event, DeviceFound):
            typer.echo(f"Found {event.device.identifier} ({event.device.label})")
        elif isinstance(event, StatusChanged):
            typer.echo(f"Status: {event.state.value}")

    try:
        client = _build_client(profile)
        try:
            result = client.provision(
                ssid,
                password,
                device_hint=device,
                scan_timeout_s=scan_timeout,
                on_event=_report,
            )
        finally:
            client.close()
    except ProvisioningError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    if not result.succeeded:
        reason = result.failure.describe() if result.failure else result.state.value
        typer.echo(f"Provisioning {result.device.identifier} failed: {reason}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Provisioned {result.device.identifier} ({result.device.label}) with SSID '{ssid}'")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
