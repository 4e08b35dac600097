"""Provisioning session state machine.

One `ProvisioningSession` drives a single BLE central connection through
scan, connect, GATT discovery and the two credential writes. Transport
callbacks may arrive on any thread; every state mutation happens under the
session lock, and session events are dispatched to subscribers outside it,
in the order they were produced.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from wifiprov.core.credentials import encode_credentials
from wifiprov.core.errors import InvalidStateError, TransportError, UnknownDeviceError
from wifiprov.core.model import (
    TERMINAL_STATES,
    CredentialField,
    Device,
    DeviceFound,
    DiscoveredCharacteristic,
    Failure,
    FailureKind,
    ProvisioningFailed,
    ProvisioningSucceeded,
    SessionConfig,
    SessionEvent,
    SessionState,
    StatusChanged,
)
from wifiprov.core.registry import DeviceRegistry, has_service, normalize_uuid, resolve_characteristics
from wifiprov.transports.base import Transport

LOGGER = logging.getLogger(__name__)

SessionSubscriber = Callable[[SessionEvent], None]


class Watchdog(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], Watchdog]


def _thread_timer(interval: float, callback: Callable[[], None]) -> Watchdog:
    timer = threading.Timer(interval, callback)
    timer.daemon = True
    return timer


class _Op(Enum):
    CONNECT = "connect"
    DISCOVER_SERVICES = "discover services"
    DISCOVER_CHARACTERISTICS = "discover characteristics"
    WRITE = "write"


# Failure reported when the transport rejects a request outright.
_REQUEST_FAILURES = {
    _Op.CONNECT: FailureKind.CONNECT_FAILED,
    _Op.DISCOVER_SERVICES: FailureKind.SERVICE_NOT_FOUND,
    _Op.DISCOVER_CHARACTERISTICS: FailureKind.CHARACTERISTIC_NOT_FOUND,
    _Op.WRITE: FailureKind.WRITE_FAILED,
}


@dataclass(frozen=True)
class _Pending:
    token: int
    op: _Op
    device_id: str
    key: Any = None
    field: CredentialField | None = None


class _EpochListener:
    """Transport listener bound to one session epoch."""

    def __init__(self, session: ProvisioningSession, epoch: int) -> None:
        self._session = session
        self._epoch = epoch

    def on_device_discovered(self, identifier: str, name: str | None) -> None:
        self._session._handle_device_discovered(self._epoch, identifier, name)

    def on_connected(self, identifier: str) -> None:
        self._session._handle_connected(self._epoch, identifier)

    def on_connect_failed(self, identifier: str, reason: str | None) -> None:
        self._session._handle_connect_failed(self._epoch, identifier, reason)

    def on_services_discovered(self, identifier: str, services: Sequence[str]) -> None:
        self._session._handle_services_discovered(self._epoch, identifier, services)

    def on_characteristics_discovered(
        self,
        identifier: str,
        service_uuid: str,
        characteristics: Sequence[DiscoveredCharacteristic],
    ) -> None:
        self._session._handle_characteristics_discovered(self._epoch, identifier, service_uuid, characteristics)

    def on_write_completed(
        self,
        identifier: str,
        handle: Any,
        success: bool,
        reason: str | None = None,
    ) -> None:
        self._session._handle_write_completed(self._epoch, identifier, handle, success, reason)

    def on_disconnected(self, identifier: str, was_requested: bool) -> None:
        self._session._handle_disconnected(self._epoch, identifier, was_requested)


class ProvisioningSession:
    def __init__(
        self,
        transport: Transport,
        *,
        config: SessionConfig | None = None,
        timer_factory: TimerFactory | None = None,
    ) -> None:
        self._transport = transport
        self._config = config or SessionConfig()
        self._timer_factory = timer_factory or _thread_timer
        self._lock = threading.RLock()

        self._state = SessionState.IDLE
        self._registry = DeviceRegistry()
        self._target: Device | None = None
        self._resolved: dict[CredentialField, Any] = {}
        self._failure: Failure | None = None
        self._payloads: dict[CredentialField, bytes] = {}

        self._epoch = 0
        self._tokens = itertools.count(1)
        self._pending: _Pending | None = None
        self._watchdog: Watchdog | None = None
        self._link_open = False

        self._subscribers: list[SessionSubscriber] = []
        self._outbox: deque[SessionEvent] = deque()
        self._dispatching = False
        self._requesting = 0

    @property
    def config(self) -> SessionConfig:
        return self._config

    # Read accessors

    def current_state(self) -> SessionState:
        with self._lock:
            return self._state

    def discovered_devices(self) -> tuple[Device, ...]:
        with self._lock:
            return self._registry.devices()

    def last_failure(self) -> Failure | None:
        with self._lock:
            return self._failure

    def target(self) -> Device | None:
        with self._lock:
            return self._target

    def resolved_characteristics(self) -> dict[CredentialField, Any]:
        with self._lock:
            return dict(self._resolved)

    def subscribe(self, subscriber: SessionSubscriber) -> Callable[[], None]:
        """Register for session events; returns a callable that unsubscribes."""
        with self._lock:
            self._subscribers.append(subscriber)

        def _unsubscribe() -> None:
            with self._lock:
                if subscriber in self._subscribers:
                    self._subscribers.remove(subscriber)

        return _unsubscribe

    # Public operations

    def start(self) -> None:
        try:
            with self._lock:
                self._require(SessionState.IDLE, "start scanning")
                self._epoch += 1
                self._registry.clear()
                self._transport.attach(_EpochListener(self, self._epoch))
                self._transition(SessionState.SCANNING)
                service_uuid = self._config.descriptor.service_uuid
                try:
                    self._transport.start_scan(service_uuid)
                except TransportError:
                    self._epoch += 1
                    self._transition(SessionState.IDLE)
                    raise
                LOGGER.debug("Scanning for service %s", service_uuid)
        finally:
            self._flush()

    def select_device(self, identifier: str) -> None:
        with self._lock:
            device = self._registry.get(identifier)
            if device is None:
                raise UnknownDeviceError(f"Device '{identifier}' was not discovered in this scan")
            self._require(SessionState.SCANNING, "select a device")
            self._quietly("stop scan", self._transport.stop_scan)
            self._target = device
            self._transition(SessionState.CONNECTING)
            self._link_open = True
            self._issue(_Op.CONNECT, device.identifier, lambda: self._transport.connect(device.identifier))
        self._flush()

    def send_credentials(self, ssid: str, password: str) -> None:
        with self._lock:
            self._require(SessionState.READY, "send credentials")
            self._payloads = encode_credentials(ssid, password, max_bytes=self._config.max_write_bytes)
            self._transition(SessionState.WRITING)
            self._write(self._target.identifier, CredentialField.SSID)
        self._flush()

    def reset(self) -> None:
        """Return to Idle from any state, abandoning outstanding transport work."""
        with self._lock:
            previous = self._state
            self._epoch += 1
            self._clear_pending()
            if previous is SessionState.SCANNING:
                self._quietly("stop scan", self._transport.stop_scan)
            if self._link_open and self._target is not None:
                identifier = self._target.identifier
                self._quietly("disconnect", lambda: self._transport.disconnect(identifier))
            self._link_open = False
            self._registry.clear()
            self._target = None
            self._resolved = {}
            self._payloads = {}
            self._failure = None
            if previous is not SessionState.IDLE:
                self._transition(SessionState.IDLE)
        self._flush()

    # Transport callbacks, delivered through _EpochListener

    def _handle_device_discovered(self, epoch: int, identifier: str, name: str | None) -> None:
        with self._lock:
            if epoch != self._epoch or self._state is not SessionState.SCANNING:
                LOGGER.debug("Discarding stale discovery of %s", identifier)
                return
            device = self._registry.add(identifier, name)
            if device is None:
                return
            LOGGER.info("Discovered %s (%s)", device.identifier, device.label)
            self._emit(DeviceFound(device))
        self._flush()

    def _handle_connected(self, epoch: int, identifier: str) -> None:
        with self._lock:
            if self._accept(epoch, _Op.CONNECT, identifier) is None:
                return
            self._transition(SessionState.DISCOVERING)
            service_uuid = self._config.descriptor.service_uuid
            self._issue(
                _Op.DISCOVER_SERVICES,
                identifier,
                lambda: self._transport.discover_services(identifier, [service_uuid]),
            )
        self._flush()

    def _handle_connect_failed(self, epoch: int, identifier: str, reason: str | None) -> None:
        with self._lock:
            if self._accept(epoch, _Op.CONNECT, identifier) is None:
                return
            self._link_open = False
            self._fail(FailureKind.CONNECT_FAILED, detail=reason)
        self._flush()

    def _handle_services_discovered(self, epoch: int, identifier: str, services: Sequence[str]) -> None:
        with self._lock:
            if self._accept(epoch, _Op.DISCOVER_SERVICES, identifier) is None:
                return
            descriptor = self._config.descriptor
            if not has_service(services, descriptor.service_uuid):
                self._fail(FailureKind.SERVICE_NOT_FOUND, detail=descriptor.service_uuid)
            else:
                wanted = [descriptor.ssid_char_uuid, descriptor.password_char_uuid]
                self._issue(
                    _Op.DISCOVER_CHARACTERISTICS,
                    identifier,
                    lambda: self._transport.discover_characteristics(identifier, descriptor.service_uuid, wanted),
                    key=normalize_uuid(descriptor.service_uuid),
                )
        self._flush()

    def _handle_characteristics_discovered(
        self,
        epoch: int,
        identifier: str,
        service_uuid: str,
        characteristics: Sequence[DiscoveredCharacteristic],
    ) -> None:
        with self._lock:
            if self._accept(epoch, _Op.DISCOVER_CHARACTERISTICS, identifier, normalize_uuid(service_uuid)) is None:
                return
            resolved, missing = resolve_characteristics(self._config.descriptor, characteristics)
            if missing:
                self._fail(FailureKind.CHARACTERISTIC_NOT_FOUND, detail=", ".join(missing))
            else:
                self._resolved = resolved
                self._transition(SessionState.READY)
        self._flush()

    def _handle_write_completed(
        self,
        epoch: int,
        identifier: str,
        handle: Any,
        success: bool,
        reason: str | None,
    ) -> None:
        with self._lock:
            pending = self._accept(epoch, _Op.WRITE, identifier, handle)
            if pending is None:
                return
            field = pending.field
            if not success:
                self._fail(FailureKind.WRITE_FAILED, field=field, detail=reason)
            elif field is CredentialField.SSID:
                self._write(identifier, CredentialField.PASSWORD)
            else:
                device = self._registry.get(identifier) or Device(identifier)
                self._payloads = {}
                self._transition(SessionState.SUCCEEDED)
                LOGGER.info("Provisioned %s", identifier)
                self._emit(ProvisioningSucceeded(device))
        self._flush()

    def _handle_disconnected(self, epoch: int, identifier: str, was_requested: bool) -> None:
        with self._lock:
            if epoch != self._epoch or self._target is None or self._target.identifier != identifier:
                LOGGER.debug("Discarding stale disconnect of %s", identifier)
                return
            self._link_open = False
            if was_requested:
                return
            if self._state in TERMINAL_STATES:
                LOGGER.info("Peripheral %s disconnected after session ended (%s)", identifier, self._state.value)
                return
            self._clear_pending()
            self._fail(FailureKind.DISCONNECTED)
        self._flush()

    def _handle_timeout(self, token: int) -> None:
        with self._lock:
            pending = self._pending
            if pending is None or pending.token != token:
                return
            self._clear_pending()
            self._fail(
                FailureKind.TIMEOUT,
                field=pending.field,
                detail=f"{pending.op.value} did not complete within {self._config.operation_timeout_s}s",
            )
        self._flush()

    # Internals; callers hold self._lock

    def _require(self, state: SessionState, action: str) -> None:
        if self._state is not state:
            raise InvalidStateError(
                f"Cannot {action} while {self._state.value}; session must be {state.value}"
            )

    def _transition(self, state: SessionState) -> None:
        LOGGER.info("Session %s -> %s", self._state.value, state.value)
        self._state = state
        self._emit(StatusChanged(state))

    def _fail(
        self,
        kind: FailureKind,
        *,
        field: CredentialField | None = None,
        detail: str | None = None,
    ) -> None:
        failure = Failure(kind=kind, field=field, detail=detail)
        LOGGER.warning("Provisioning failed: %s", failure.describe())
        self._failure = failure
        self._resolved = {}
        self._payloads = {}
        self._transition(SessionState.FAILED)
        self._emit(ProvisioningFailed(failure))

    def _write(self, identifier: str, field: CredentialField) -> None:
        handle = self._resolved[field]
        payload = self._payloads[field]
        LOGGER.debug("Writing %s (%d bytes) to %s", field.value, len(payload), identifier)
        self._issue(
            _Op.WRITE,
            identifier,
            lambda: self._transport.write_characteristic(identifier, handle, payload, confirmed=True),
            key=handle,
            field=field,
        )

    def _issue(
        self,
        op: _Op,
        identifier: str,
        request: Callable[[], None],
        *,
        key: Any = None,
        field: CredentialField | None = None,
    ) -> None:
        """Record the single outstanding request, arm its watchdog, then send it."""
        pending = _Pending(
            token=next(self._tokens),
            op=op,
            device_id=identifier,
            key=key,
            field=field,
        )
        self._pending = pending
        timeout = self._config.operation_timeout_s
        if timeout is not None:
            watchdog = self._timer_factory(timeout, lambda: self._handle_timeout(pending.token))
            self._watchdog = watchdog
            watchdog.start()
        self._requesting += 1
        try:
            request()
        except TransportError as exc:
            if self._pending is not pending:
                # A synchronous callback already resolved this request.
                return
            self._clear_pending()
            if op is _Op.CONNECT:
                self._link_open = False
            self._fail(_REQUEST_FAILURES[op], field=field, detail=str(exc))
        finally:
            self._requesting -= 1

    def _accept(self, epoch: int, op: _Op, identifier: str, key: Any = None) -> _Pending | None:
        pending = self._pending
        if (
            epoch != self._epoch
            or pending is None
            or pending.op is not op
            or pending.device_id != identifier
            or (key is not None and pending.key != key)
        ):
            LOGGER.debug("Discarding stale %s callback for %s", op.value, identifier)
            return None
        self._clear_pending()
        return pending

    def _clear_pending(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None
        self._pending = None

    def _quietly(self, action: str, request: Callable[[], None]) -> None:
        try:
            request()
        except TransportError as exc:
            LOGGER.warning("Transport %s failed: %s", action, exc)

    def _emit(self, event: SessionEvent) -> None:
        self._outbox.append(event)

    def _flush(self) -> None:
        with self._lock:
            # Callbacks answered synchronously inside a request leave their
            # events for the caller that still holds the lock.
            if self._dispatching or self._requesting:
                return
            self._dispatching = True
        while True:
            with self._lock:
                if not self._outbox:
                    self._dispatching = False
                    return
                event = self._outbox.popleft()
                subscribers = tuple(self._subscribers)
            for subscriber in subscribers:
                try:
                    subscriber(event)
                except Exception:
                    LOGGER.exception("Session subscriber failed handling %s", type(event).__name__)
