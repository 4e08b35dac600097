from __future__ import annotations

from conftest import PASSWORD_HANDLE, SSID_HANDLE, FakeTimerFactory, FakeTransport, drive_to_ready

from wifiprov.core.model import DEFAULT_DESCRIPTOR, CredentialField, FailureKind, SessionConfig, SessionState
from wifiprov.core.session import ProvisioningSession


def _connecting(session: ProvisioningSession, transport: FakeTransport) -> None:
    session.start()
    transport.listener.on_device_discovered("dev1", "Kitchen")
    session.select_device("dev1")


def test_scanning_is_not_timed(session: ProvisioningSession, timers: FakeTimerFactory) -> None:
    session.start()
    assert timers.timers == []


def test_connect_timeout_fails_session(
    session: ProvisioningSession,
    transport: FakeTransport,
    timers: FakeTimerFactory,
) -> None:
    _connecting(session, transport)
    assert len(timers.active) == 1
    assert timers.active[0].interval == 5.0

    timers.active[0].fire()

    failure = session.last_failure()
    assert session.current_state() is SessionState.FAILED
    assert failure is not None
    assert failure.kind is FailureKind.TIMEOUT
    assert "connect" in (failure.detail or "")


def test_late_callback_after_timeout_is_ignored(
    session: ProvisioningSession,
    transport: FakeTransport,
    timers: FakeTimerFactory,
) -> None:
    _connecting(session, transport)
    timers.active[0].fire()

    transport.listener.on_connected("dev1")

    assert session.current_state() is SessionState.FAILED
    assert "discover_services" not in transport.names()


def test_timeout_is_cleared_by_callback(
    session: ProvisioningSession,
    transport: FakeTransport,
    timers: FakeTimerFactory,
) -> None:
    _connecting(session, transport)
    connect_timer = timers.active[0]

    transport.listener.on_connected("dev1")

    assert connect_timer.cancelled
    assert len(timers.active) == 1

    connect_timer.fire()
    assert session.current_state() is SessionState.DISCOVERING


def test_each_operation_gets_a_watchdog(
    session: ProvisioningSession,
    transport: FakeTransport,
    timers: FakeTimerFactory,
) -> None:
    drive_to_ready(session, transport)
    session.send_credentials("MyWifi", "secret123")
    transport.listener.on_write_completed("dev1", SSID_HANDLE, True)
    transport.listener.on_write_completed("dev1", PASSWORD_HANDLE, True)

    # connect, services, characteristics, SSID write, password write
    assert len(timers.timers) == 5
    assert timers.active == []


def test_write_timeout_names_the_field(
    session: ProvisioningSession,
    transport: FakeTransport,
    timers: FakeTimerFactory,
) -> None:
    drive_to_ready(session, transport)
    session.send_credentials("MyWifi", "secret123")
    transport.listener.on_write_completed("dev1", SSID_HANDLE, True)

    timers.active[0].fire()

    failure = session.last_failure()
    assert failure is not None
    assert failure.kind is FailureKind.TIMEOUT
    assert failure.field is CredentialField.PASSWORD


def test_reset_cancels_watchdog(
    session: ProvisioningSession,
    transport: FakeTransport,
    timers: FakeTimerFactory,
) -> None:
    _connecting(session, transport)
    watchdog = timers.active[0]

    session.reset()

    assert watchdog.cancelled
    watchdog.fire()
    assert session.current_state() is SessionState.IDLE
    assert session.last_failure() is None


def test_disabled_watchdog(transport: FakeTransport, timers: FakeTimerFactory) -> None:
    session = ProvisioningSession(
        transport,
        config=SessionConfig(descriptor=DEFAULT_DESCRIPTOR, operation_timeout_s=None),
        timer_factory=timers,
    )
    _connecting(session, transport)

    assert timers.timers == []
    assert session.current_state() is SessionState.CONNECTING
