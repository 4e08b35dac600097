"""Transport interfaces.

A transport issues BLE central-role requests and reports their outcome
asynchronously through a `TransportListener`. Requests return immediately.
Each request's callback goes to the listener that was attached when the
request was issued, so re-attaching never redirects an older request's
callback to the new listener.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol

from wifiprov.core.model import DiscoveredCharacteristic


class TransportListener(Protocol):
    def on_device_discovered(self, identifier: str, name: str | None) -> None: ...

    def on_connected(self, identifier: str) -> None: ...

    def on_connect_failed(self, identifier: str, reason: str | None) -> None: ...

    def on_services_discovered(self, identifier: str, services: Sequence[str]) -> None: ...

    def on_characteristics_discovered(
        self,
        identifier: str,
        service_uuid: str,
        characteristics: Sequence[DiscoveredCharacteristic],
    ) -> None: ...

    def on_write_completed(
        self,
        identifier: str,
        handle: Any,
        success: bool,
        reason: str | None = None,
    ) -> None: ...

    def on_disconnected(self, identifier: str, was_requested: bool) -> None: ...


class Transport(Protocol):
    def attach(self, listener: TransportListener) -> None:
        """Set the listener that receives callbacks for subsequent requests."""

    def start_scan(self, service_uuid: str) -> None: ...

    def stop_scan(self) -> None: ...

    def connect(self, identifier: str) -> None: ...

    def disconnect(self, identifier: str) -> None: ...

    def discover_services(self, identifier: str, uuids: Sequence[str]) -> None: ...

    def discover_characteristics(
        self,
        identifier: str,
        service_uuid: str,
        uuids: Sequence[str],
    ) -> None: ...

    def write_characteristic(
        self,
        identifier: str,
        handle: Any,
        data: bytes,
        *,
        confirmed: bool = True,
    ) -> None: ...
