from __future__ import annotations

from typing import Any

import pytest

from wifiprov.core.errors import TransportError
from wifiprov.core.model import DEFAULT_DESCRIPTOR, DiscoveredCharacteristic, SessionConfig
from wifiprov.core.session import ProvisioningSession

SSID_HANDLE = 0x10
PASSWORD_HANDLE = 0x12
PROVISIONING_CHARACTERISTICS = [
    DiscoveredCharacteristic(uuid=DEFAULT_DESCRIPTOR.ssid_char_uuid, handle=SSID_HANDLE),
    DiscoveredCharacteristic(uuid=DEFAULT_DESCRIPTOR.password_char_uuid, handle=PASSWORD_HANDLE),
]


class FakeTransport:
    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.listener: Any = None
        self.reject: set[str] = set()

    def attach(self, listener: Any) -> None:
        self.listener = listener

    def start_scan(self, service_uuid: str) -> None:
        self._record("start_scan", service_uuid)

    def stop_scan(self) -> None:
        self._record("stop_scan")

    def connect(self, identifier: str) -> None:
        self._record("connect", identifier)

    def disconnect(self, identifier: str) -> None:
        self._record("disconnect", identifier)

    def discover_services(self, identifier: str, uuids: list[str]) -> None:
        self._record("discover_services", identifier, list(uuids))

    def discover_characteristics(self, identifier: str, service_uuid: str, uuids: list[str]) -> None:
        self._record("discover_characteristics", identifier, service_uuid, list(uuids))

    def write_characteristic(self, identifier: str, handle: Any, data: bytes, *, confirmed: bool = True) -> None:
        self._record("write_characteristic", identifier, handle, data, confirmed)

    def names(self) -> list[str]:
        return [call[0] for call in self.calls]

    def writes(self) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == "write_characteristic"]

    def _record(self, name: str, *args: Any) -> None:
        if name in self.reject:
            raise TransportError(f"{name} rejected")
        self.calls.append((name, *args))


class FakeTimer:
    def __init__(self, interval: float, callback: Any) -> None:
        self.interval = interval
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.callback()


class FakeTimerFactory:
    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def __call__(self, interval: float, callback: Any) -> FakeTimer:
        timer = FakeTimer(interval, callback)
        self.timers.append(timer)
        return timer

    @property
    def active(self) -> list[FakeTimer]:
        return [t for t in self.timers if t.started and not t.cancelled]


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def timers() -> FakeTimerFactory:
    return FakeTimerFactory()


@pytest.fixture
def events() -> list[Any]:
    return []


@pytest.fixture
def session(transport: FakeTransport, timers: FakeTimerFactory, events: list[Any]) -> ProvisioningSession:
    provisioning = ProvisioningSession(
        transport,
        config=SessionConfig(max_write_bytes=32, operation_timeout_s=5.0),
        timer_factory=timers,
    )
    provisioning.subscribe(events.append)
    return provisioning


def drive_to_ready(session: ProvisioningSession, transport: FakeTransport, identifier: str = "dev1") -> None:
    session.start()
    transport.listener.on_device_discovered(identifier, "Kitchen")
    session.select_device(identifier)
    transport.listener.on_connected(identifier)
    transport.listener.on_services_discovered(identifier, [DEFAULT_DESCRIPTOR.service_uuid])
    transport.listener.on_characteristics_discovered(
        identifier,
        DEFAULT_DESCRIPTOR.service_uuid,
        PROVISIONING_CHARACTERISTICS,
    )
