"""Stable public API for building tooling on top of wifiprov.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

import logging
import queue
import time
from collections.abc import Callable

from wifiprov.core.credentials import encode_credentials
from wifiprov.core.device_match import matches_hint, select_device
from wifiprov.core.errors import (
    DeviceSelectionError,
    InvalidInputError,
    InvalidStateError,
    ProfileLoadError,
    ProfileValidationError,
    ProvisioningError,
    SessionTimeoutError,
    TransportError,
    TransportUnavailableError,
    UnknownDeviceError,
)
from wifiprov.core.model import (
    DEFAULT_DESCRIPTOR,
    CredentialField,
    Device,
    DeviceFound,
    Failure,
    FailureKind,
    Profile,
    ProvisioningFailed,
    ProvisioningResult,
    ProvisioningSucceeded,
    ServiceDescriptor,
    SessionConfig,
    SessionEvent,
    SessionState,
    StatusChanged,
)
from wifiprov.core.profile_loader import load_profiles
from wifiprov.core.session import ProvisioningSession
from wifiprov.transports.base import Transport, TransportListener

__all__ = [
    "ProvisioningError",
    "InvalidStateError",
    "UnknownDeviceError",
    "InvalidInputError",
    "DeviceSelectionError",
    "SessionTimeoutError",
    "ProfileLoadError",
    "ProfileValidationError",
    "TransportError",
    "TransportUnavailableError",
    "DEFAULT_DESCRIPTOR",
    "CredentialField",
    "Device",
    "DeviceFound",
    "Failure",
    "FailureKind",
    "Profile",
    "ProvisioningFailed",
    "ProvisioningResult",
    "ProvisioningSucceeded",
    "ServiceDescriptor",
    "SessionConfig",
    "SessionEvent",
    "SessionState",
    "StatusChanged",
    "ProvisioningSession",
    "Transport",
    "TransportListener",
    "Client",
]

LOGGER = logging.getLogger(__name__)

_TERMINAL_EVENTS = (ProvisioningSucceeded, ProvisioningFailed)


def _default_transport() -> Transport:
    from wifiprov.transports.ble_gatt import BleakTransport

    return BleakTransport()


class Client:
    """Blocking client that drives a `ProvisioningSession` end to end.

    Suited to scripts and CLIs; interactive frontends should subscribe to a
    `ProvisioningSession` directly and react to its events.
    """

    def __init__(
        self,
        *,
        transport: Transport | None = None,
        profile_id: str | None = None,
    ) -> None:
        loaded = load_profiles()
        self.load_warnings = loaded.warnings
        self._profiles = loaded.profiles
        self.profile = loaded.get(profile_id)
        self._transport = transport or _default_transport()
        self.session = ProvisioningSession(self._transport, config=self.profile.session_config())

    def list_profiles(self) -> list[Profile]:
        return sorted(self._profiles.values(), key=lambda p: p.id)

    def scan(self, timeout_s: float | None = None) -> list[Device]:
        """Scan for one window and return every advertising device seen."""
        window = self.profile.scan_timeout_s if timeout_s is None else timeout_s
        self.session.start()
        try:
            time.sleep(window)
            return list(self.session.discovered_devices())
        finally:
            self.session.reset()

    def provision(
        self,
        ssid: str,
        password: str,
        *,
        device_hint: str | None = None,
        scan_timeout_s: float | None = None,
        wait_timeout_s: float = 30.0,
        on_event: Callable[[SessionEvent], None] | None = None,
    ) -> ProvisioningResult:
        # Reject bad input before spending a connection on it.
        encode_credentials(ssid, password, max_bytes=self.profile.max_write_bytes)
        window = self.profile.scan_timeout_s if scan_timeout_s is None else scan_timeout_s

        events: queue.Queue[SessionEvent] = queue.Queue()

        def _collect(event: SessionEvent) -> None:
            events.put(event)
            if on_event is not None:
                on_event(event)

        unsubscribe = self.session.subscribe(_collect)
        try:
            self.session.start()
            device = self._await_device(events, device_hint, window)
            LOGGER.info("Provisioning %s (%s)", device.identifier, device.label)
            self.session.select_device(device.identifier)

            event = self._await_event(
                events,
                lambda e: (isinstance(e, StatusChanged) and e.state is SessionState.READY)
                or isinstance(e, ProvisioningFailed),
                wait_timeout_s,
            )
            if isinstance(event, StatusChanged):
                self.session.send_credentials(ssid, password)
                self._await_event(events, lambda e: isinstance(e, _TERMINAL_EVENTS), wait_timeout_s)

            return ProvisioningResult(
                device=device,
                state=self.session.current_state(),
                failure=self.session.last_failure(),
            )
        finally:
            unsubscribe()
            self.session.reset()

    def close(self) -> None:
        self.session.reset()
        close = getattr(self._transport, "close", None)
        if callable(close):
            close()

    def _await_device(
        self,
        events: queue.Queue[SessionEvent],
        device_hint: str | None,
        window: float,
    ) -> Device:
        deadline = time.monotonic() + window
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                event = events.get(timeout=remaining)
            except queue.Empty:
                break
            if device_hint and isinstance(event, DeviceFound) and matches_hint(event.device, device_hint):
                return event.device
        return select_device(self.session.discovered_devices(), device_hint)

    def _await_event(
        self,
        events: queue.Queue[SessionEvent],
        predicate: Callable[[SessionEvent], bool],
        timeout_s: float,
    ) -> SessionEvent:
        deadline = time.monotonic() + timeout_s
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise SessionTimeoutError(
                    f"No progress from session within {timeout_s}s (state: {self.session.current_state().value})"
                )
            try:
                event = events.get(timeout=remaining)
            except queue.Empty:
                continue
            if predicate(event):
                return event
