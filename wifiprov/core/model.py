"""Core data models used across the session, transports, and CLI."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union


class SessionState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    DISCOVERING = "discovering"
    READY = "ready"
    WRITING = "writing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATES = frozenset({SessionState.SUCCEEDED, SessionState.FAILED})


class CredentialField(Enum):
    SSID = "ssid"
    PASSWORD = "password"


class FailureKind(Enum):
    CONNECT_FAILED = "connect_failed"
    SERVICE_NOT_FOUND = "service_not_found"
    CHARACTERISTIC_NOT_FOUND = "characteristic_not_found"
    WRITE_FAILED = "write_failed"
    DISCONNECTED = "disconnected"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class Device:
    identifier: str
    display_name: str | None = None

    @property
    def label(self) -> str:
        return self.display_name or "<unnamed>"


@dataclass(frozen=True)
class ServiceDescriptor:
    service_uuid: str
    ssid_char_uuid: str
    password_char_uuid: str

    def char_uuid(self, field: CredentialField) -> str:
        if field is CredentialField.SSID:
            return self.ssid_char_uuid
        return self.password_char_uuid


# Shared with the peripheral firmware; must match bit-for-bit.
DEFAULT_DESCRIPTOR = ServiceDescriptor(
    service_uuid="a0a8e453-562a-49a3-a2e4-29a8e88b0e9b",
    ssid_char_uuid="b1b0ac35-a253-4258-a5a5-a2a6a928b03b",
    password_char_uuid="c2c1bd48-b363-4369-b2b9-b3b8b5b6b4b3",
)

# ATT caps an attribute value at 512 bytes.
MAX_ATTRIBUTE_BYTES = 512


@dataclass(frozen=True)
class SessionConfig:
    descriptor: ServiceDescriptor = DEFAULT_DESCRIPTOR
    max_write_bytes: int = MAX_ATTRIBUTE_BYTES
    operation_timeout_s: float | None = 15.0


@dataclass(frozen=True)
class Profile:
    id: str
    name: str
    descriptor: ServiceDescriptor
    max_write_bytes: int = MAX_ATTRIBUTE_BYTES
    operation_timeout_s: float | None = 15.0
    scan_timeout_s: float = 10.0

    def session_config(self) -> SessionConfig:
        return SessionConfig(
            descriptor=self.descriptor,
            max_write_bytes=self.max_write_bytes,
            operation_timeout_s=self.operation_timeout_s,
        )


@dataclass(frozen=True)
class DiscoveredCharacteristic:
    uuid: str
    handle: Any


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    field: CredentialField | None = None
    detail: str | None = None

    def describe(self) -> str:
        text = self.kind.value
        if self.field is not None:
            text = f"{text}({self.field.value})"
        if self.detail:
            text = f"{text}: {self.detail}"
        return text


@dataclass(frozen=True)
class DeviceFound:
    device: Device


@dataclass(frozen=True)
class StatusChanged:
    state: SessionState


@dataclass(frozen=True)
class ProvisioningSucceeded:
    device: Device


@dataclass(frozen=True)
class ProvisioningFailed:
    failure: Failure


SessionEvent = Union[DeviceFound, StatusChanged, ProvisioningSucceeded, ProvisioningFailed]


@dataclass(frozen=True)
class ProvisioningResult:
    device: Device
    state: SessionState
    failure: Failure | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is SessionState.SUCCEEDED
