"""Discovered-device bookkeeping and GATT characteristic matching."""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from typing import Any

from wifiprov.core.model import CredentialField, Device, DiscoveredCharacteristic, ServiceDescriptor

_SHORT_UUID_RE = re.compile(r"^[0-9a-f]{4}$|^[0-9a-f]{8}$")
_BASE_UUID_SUFFIX = "-0000-1000-8000-00805f9b34fb"


def normalize_uuid(value: str) -> str:
    """Lower-case a UUID string, expanding 16/32-bit forms onto the Bluetooth base UUID."""
    normalized = str(value).strip().lower()
    if _SHORT_UUID_RE.match(normalized):
        return normalized.rjust(8, "0") + _BASE_UUID_SUFFIX
    return normalized


class DeviceRegistry:
    """Discovered devices in first-seen order, one entry per identifier."""

    def __init__(self) -> None:
        self._devices: dict[str, Device] = {}

    def add(self, identifier: str, name: str | None = None) -> Device | None:
        """Record a discovery; returns the new Device, or None for a rediscovery."""
        if identifier in self._devices:
            return None
        device = Device(identifier=identifier, display_name=name or None)
        self._devices[identifier] = device
        return device

    def get(self, identifier: str) -> Device | None:
        return self._devices.get(identifier)

    def devices(self) -> tuple[Device, ...]:
        return tuple(self._devices.values())

    def clear(self) -> None:
        self._devices.clear()

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._devices

    def __len__(self) -> int:
        return len(self._devices)


def has_service(services: Iterable[str], service_uuid: str) -> bool:
    wanted = normalize_uuid(service_uuid)
    return any(normalize_uuid(uuid) == wanted for uuid in services)


def resolve_characteristics(
    descriptor: ServiceDescriptor,
    characteristics: Sequence[DiscoveredCharacteristic],
) -> tuple[dict[CredentialField, Any], tuple[str, ...]]:
    """Map each credential field to its characteristic handle.

    Returns the resolved mapping and the UUIDs that could not be found. The
    first characteristic carrying a given UUID wins.
    """
    by_uuid: dict[str, Any] = {}
    for characteristic in characteristics:
        by_uuid.setdefault(normalize_uuid(characteristic.uuid), characteristic.handle)

    resolved: dict[CredentialField, Any] = {}
    missing: list[str] = []
    for field in CredentialField:
        uuid = normalize_uuid(descriptor.char_uuid(field))
        if uuid in by_uuid:
            resolved[field] = by_uuid[uuid]
        else:
            missing.append(uuid)
    return resolved, tuple(missing)
