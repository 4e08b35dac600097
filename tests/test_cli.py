from __future__ import annotations

from typer.testing import CliRunner

from wifiprov import cli
from wifiprov.core.model import (
    DEFAULT_DESCRIPTOR,
    Device,
    DeviceFound,
    Failure,
    FailureKind,
    CredentialField,
    Profile,
    ProvisioningResult,
    SessionState,
    StatusChanged,
)

DEVICE = Device("AA:BB:CC:DD:EE:FF", "PiZero-WiFi-Setup")


class FakeClient:
    last_call: dict = {}

    def __init__(self, profile_id=None) -> None:
        self.profile_id = profile_id
        self.load_warnings = ()
        self.closed = False

    def list_profiles(self):
        return [Profile(id="default", name="PiZero Wi-Fi Setup", descriptor=DEFAULT_DESCRIPTOR)]

    def scan(self, timeout_s=None):
        return [DEVICE]

    def provision(self, ssid, password, *, device_hint=None, scan_timeout_s=None, on_event=None):
        FakeClient.last_call = {"ssid": ssid, "password": password, "device_hint": device_hint}
        if on_event is not None:
            on_event(DeviceFound(DEVICE))
            on_event(StatusChanged(SessionState.SUCCEEDED))
        return ProvisioningResult(device=DEVICE, state=SessionState.SUCCEEDED)

    def close(self) -> None:
        self.closed = True


runner = CliRunner()


def test_profiles_command(monkeypatch):
    monkeypatch.setattr(cli, "Client", FakeClient)
    result = runner.invoke(cli.app, ["profiles"])
    assert result.exit_code == 0
    assert "default: PiZero Wi-Fi Setup" in result.stdout
    assert DEFAULT_DESCRIPTOR.service_uuid in result.stdout


def test_scan_command(monkeypatch):
    monkeypatch.setattr(cli, "Client", FakeClient)
    result = runner.invoke(cli.app, ["scan", "--timeout", "1"])
    assert result.exit_code == 0
    assert "AA:BB:CC:DD:EE:FF PiZero-WiFi-Setup" in result.stdout


def test_scan_command_without_devices(monkeypatch):
    class EmptyClient(FakeClient):
        def scan(self, timeout_s=None):
            return []

    monkeypatch.setattr(cli, "Client", EmptyClient)
    result = runner.invoke(cli.app, ["scan"])
    assert result.exit_code == 0
    assert "No provisionable devices found" in result.stdout


def test_provision_command(monkeypatch):
    monkeypatch.setattr(cli, "Client", FakeClient)
    result = runner.invoke(
        cli.app,
        ["provision", "--ssid", "MyWifi", "--password", "secret123", "--device", "pizero"],
    )
    assert result.exit_code == 0
    assert "Found AA:BB:CC:DD:EE:FF" in result.stdout
    assert "Status: succeeded" in result.stdout
    assert "Provisioned AA:BB:CC:DD:EE:FF" in result.stdout
    assert "secret123" not in result.stdout
    assert FakeClient.last_call == {"ssid": "MyWifi", "password": "secret123", "device_hint": "pizero"}


def test_provision_prompts_for_password(monkeypatch):
    monkeypatch.setattr(cli, "Client", FakeClient)
    result = runner.invoke(cli.app, ["provision", "--ssid", "MyWifi"], input="hunter2\n")
    assert result.exit_code == 0
    assert FakeClient.last_call["password"] == "hunter2"


def test_provision_failure_exits_nonzero(monkeypatch):
    class FailingClient(FakeClient):
        def provision(self, ssid, password, *, device_hint=None, scan_timeout_s=None, on_event=None):
            return ProvisioningResult(
                device=DEVICE,
                state=SessionState.FAILED,
                failure=Failure(FailureKind.WRITE_FAILED, field=CredentialField.SSID),
            )

    monkeypatch.setattr(cli, "Client", FailingClient)
    result = runner.invoke(cli.app, ["provision", "--ssid", "MyWifi", "--password", "pw"])
    assert result.exit_code == 1
    assert "write_failed(ssid)" in result.stderr


def test_provision_error_is_clean(monkeypatch):
    class SelectionFailure(FakeClient):
        def provision(self, ssid, password, *, device_hint=None, scan_timeout_s=None, on_event=None):
            from wifiprov.core.errors import DeviceSelectionError

            raise DeviceSelectionError("No device found matching 'kitchen'")

    monkeypatch.setattr(cli, "Client", SelectionFailure)
    result = runner.invoke(cli.app, ["provision", "--ssid", "MyWifi", "--password", "pw", "--device", "kitchen"])
    assert result.exit_code == 1
    assert "Error: No device found matching 'kitchen'" in result.stderr
    assert "Traceback" not in result.stdout
    assert "Traceback" not in result.stderr


def test_load_warning_is_printed(monkeypatch):
    class WarnClient(FakeClient):
        def __init__(self, profile_id=None) -> None:
            super().__init__(profile_id)
            self.load_warnings = ("User profile 'default' overrides packaged profile",)

    monkeypatch.setattr(cli, "Client", WarnClient)
    result = runner.invoke(cli.app, ["profiles"])
    assert result.exit_code == 0
    assert "Warning: User profile 'default' overrides packaged profile" in result.stderr
