"""BLE GATT transport implementation on top of bleak.

Requests are scheduled on a private asyncio loop running in a daemon thread,
and their outcomes are reported through the listener that was attached when
each request was issued. Callbacks are handed to a separate delivery thread,
in order, so a listener that blocks never stalls the loop.
"""

from __future__ import annotations

import asyncio
import logging
import queue
import threading
from collections.abc import Callable, Coroutine, Sequence
from concurrent.futures import Future
from typing import Any

from wifiprov.core.errors import TransportError, TransportUnavailableError
from wifiprov.core.model import DiscoveredCharacteristic
from wifiprov.core.registry import normalize_uuid
from wifiprov.transports.base import TransportListener

LOGGER = logging.getLogger(__name__)


def _bleak() -> Any:
    try:
        import bleak
    except Exception as exc:
        raise TransportUnavailableError(
            "BLE transport requires 'bleak'. Install dependency and retry."
        ) from exc
    return bleak


class BleakTransport:
    def __init__(self, *, connect_timeout_s: float = 10.0, scan_start_timeout_s: float = 5.0) -> None:
        self.connect_timeout_s = connect_timeout_s
        self.scan_start_timeout_s = scan_start_timeout_s
        self._lock = threading.Lock()
        self._listener: TransportListener | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._scanner: Any = None
        self._seen: dict[str, Any] = {}
        self._clients: dict[str, Any] = {}
        self._requested_disconnects: set[str] = set()
        self._callbacks: queue.Queue[tuple[Callable[..., None], tuple[Any, ...]] | None] = queue.Queue()
        self._delivery: threading.Thread | None = None

    def attach(self, listener: TransportListener) -> None:
        with self._lock:
            self._listener = listener

    def start_scan(self, service_uuid: str) -> None:
        listener = self._current_listener()
        bleak = _bleak()

        def _on_detect(device: Any, advertisement: Any) -> None:
            self._seen[device.address] = device
            name = device.name or getattr(advertisement, "local_name", None)
            self._deliver(listener.on_device_discovered, device.address, name)

        async def _start() -> None:
            if self._scanner is not None:
                await self._scanner.stop()
            scanner = bleak.BleakScanner(detection_callback=_on_detect, service_uuids=[service_uuid])
            await scanner.start()
            self._scanner = scanner

        future = self._submit(_start())
        try:
            future.result(timeout=self.scan_start_timeout_s)
        except TransportError:
            raise
        except Exception as exc:
            raise TransportUnavailableError(f"BLE scan could not start: {exc}") from exc
        LOGGER.debug("BLE scan started for %s", service_uuid)

    def stop_scan(self) -> None:
        async def _stop() -> None:
            scanner, self._scanner = self._scanner, None
            if scanner is not None:
                await scanner.stop()

        self._submit(_stop())

    def connect(self, identifier: str) -> None:
        listener = self._current_listener()
        bleak = _bleak()

        def _on_disconnect(_client: Any) -> None:
            self._clients.pop(identifier, None)
            was_requested = identifier in self._requested_disconnects
            self._requested_disconnects.discard(identifier)
            self._deliver(listener.on_disconnected, identifier, was_requested)

        async def _connect() -> None:
            target = self._seen.get(identifier, identifier)
            client = bleak.BleakClient(
                target,
                disconnected_callback=_on_disconnect,
                timeout=self.connect_timeout_s,
            )
            self._requested_disconnects.discard(identifier)
            try:
                await client.connect()
            except Exception as exc:  # noqa: BLE001
                self._deliver(listener.on_connect_failed, identifier, str(exc) or type(exc).__name__)
                return
            self._clients[identifier] = client
            self._deliver(listener.on_connected, identifier)

        self._submit(_connect())

    def disconnect(self, identifier: str) -> None:
        async def _disconnect() -> None:
            self._requested_disconnects.add(identifier)
            client = self._clients.pop(identifier, None)
            if client is not None:
                await client.disconnect()

        self._submit(_disconnect())

    def discover_services(self, identifier: str, uuids: Sequence[str]) -> None:
        listener = self._current_listener()
        wanted = {normalize_uuid(u) for u in uuids}

        async def _discover() -> None:
            client = self._clients.get(identifier)
            found: list[str] = []
            try:
                if client is not None and client.services is not None:
                    found = [
                        service.uuid
                        for service in client.services
                        if not wanted or normalize_uuid(service.uuid) in wanted
                    ]
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Service discovery on %s failed: %s", identifier, exc)
                found = []
            self._deliver(listener.on_services_discovered, identifier, found)

        self._submit(_discover())

    def discover_characteristics(self, identifier: str, service_uuid: str, uuids: Sequence[str]) -> None:
        listener = self._current_listener()
        wanted = {normalize_uuid(u) for u in uuids}

        async def _discover() -> None:
            client = self._clients.get(identifier)
            found: list[DiscoveredCharacteristic] = []
            try:
                service = client.services.get_service(service_uuid) if client is not None else None
                if service is not None:
                    found = [
                        DiscoveredCharacteristic(uuid=char.uuid, handle=char.handle)
                        for char in service.characteristics
                        if not wanted or normalize_uuid(char.uuid) in wanted
                    ]
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Characteristic discovery on %s failed: %s", identifier, exc)
                found = []
            self._deliver(listener.on_characteristics_discovered, identifier, service_uuid, found)

        self._submit(_discover())

    def write_characteristic(
        self,
        identifier: str,
        handle: Any,
        data: bytes,
        *,
        confirmed: bool = True,
    ) -> None:
        listener = self._current_listener()

        async def _write() -> None:
            client = self._clients.get(identifier)
            if client is None:
                self._deliver(listener.on_write_completed, identifier, handle, False, "not connected")
                return
            try:
                await client.write_gatt_char(handle, data, response=confirmed)
            except Exception as exc:  # noqa: BLE001
                self._deliver(listener.on_write_completed, identifier, handle, False, str(exc) or type(exc).__name__)
                return
            self._deliver(listener.on_write_completed, identifier, handle, True)

        self._submit(_write())

    def close(self) -> None:
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop = None
            self._thread = None
        if loop is None:
            return

        async def _shutdown() -> None:
            scanner, self._scanner = self._scanner, None
            if scanner is not None:
                await scanner.stop()
            clients = list(self._clients.items())
            self._clients.clear()
            for identifier, client in clients:
                self._requested_disconnects.add(identifier)
                await client.disconnect()

        try:
            asyncio.run_coroutine_threadsafe(_shutdown(), loop).result(timeout=self.connect_timeout_s)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("BLE transport shutdown incomplete: %s", exc)
        finally:
            loop.call_soon_threadsafe(loop.stop)
            if thread is not None:
                thread.join(timeout=self.connect_timeout_s)
            if thread is None or not thread.is_alive():
                loop.close()
            self._stop_delivery()

    def _current_listener(self) -> TransportListener:
        with self._lock:
            listener = self._listener
        if listener is None:
            raise TransportError("No listener attached to BLE transport")
        return listener

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None:
                loop = asyncio.new_event_loop()
                thread = threading.Thread(target=loop.run_forever, name="wifiprov-ble", daemon=True)
                thread.start()
                self._loop = loop
                self._thread = thread
            return self._loop

    def _submit(self, coro: Coroutine[Any, Any, None]) -> Future[None]:
        future = asyncio.run_coroutine_threadsafe(coro, self._ensure_loop())
        future.add_done_callback(_log_unexpected)
        return future

    def _deliver(self, callback: Callable[..., None], *args: Any) -> None:
        with self._lock:
            if self._delivery is None or not self._delivery.is_alive():
                self._delivery = threading.Thread(
                    target=self._run_delivery,
                    name="wifiprov-ble-callbacks",
                    daemon=True,
                )
                self._delivery.start()
        self._callbacks.put((callback, args))

    def _stop_delivery(self) -> None:
        with self._lock:
            delivery, self._delivery = self._delivery, None
        if delivery is not None and delivery.is_alive():
            self._callbacks.put(None)
            delivery.join(timeout=self.connect_timeout_s)

    def _run_delivery(self) -> None:
        while True:
            item = self._callbacks.get()
            if item is None:
                return
            callback, args = item
            try:
                callback(*args)
            except Exception:
                LOGGER.exception("Transport listener failed in %s", getattr(callback, "__name__", callback))


def _log_unexpected(future: Future[None]) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        LOGGER.error("BLE transport task failed: %s", exc, exc_info=exc)
