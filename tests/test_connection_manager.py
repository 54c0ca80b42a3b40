"""Connection state machine and reconnect backoff tests."""

import pytest

from app.errors import SessionConnectionError
from app.services.connection_manager import ConnectionManager, ConnectionState, reconnect_delay_ms


def make_manager(transports, scheduler, *, auto_reconnect=True, received=None):
    states = []
    manager = ConnectionManager(
        transports,
        on_message=(received.append if received is not None else lambda raw: None),
        on_state_change=states.append,
        auto_reconnect=auto_reconnect,
        scheduler=scheduler,
    )
    return manager, states


def test_backoff_sequence():
    delays = [reconnect_delay_ms(attempt, base_ms=1000, max_ms=30000) for attempt in range(7)]
    assert delays == [1000, 2000, 4000, 8000, 16000, 30000, 30000]


def test_connect_then_open(transports, scheduler):
    manager, states = make_manager(transports, scheduler)
    manager.connect()
    assert manager.state == ConnectionState.CONNECTING
    assert transports.last.opened

    transports.last.on_open()
    assert manager.state == ConnectionState.CONNECTED
    assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]


def test_connect_is_noop_while_connecting_or_connected(transports, scheduler):
    manager, _ = make_manager(transports, scheduler)
    manager.connect()
    manager.connect()
    assert len(transports.transports) == 1
    transports.last.on_open()
    manager.connect()
    assert len(transports.transports) == 1


def test_failed_construction_goes_to_error(scheduler):
    def broken_factory(**callbacks):
        raise OSError("no route")

    manager, _ = make_manager(broken_factory, scheduler)
    manager.connect()
    assert manager.state == ConnectionState.ERROR
    assert isinstance(manager.last_error, OSError)


def test_close_schedules_reconnect_with_backoff(transports, scheduler):
    manager, _ = make_manager(transports, scheduler)
    manager.connect()
    transports.last.on_open()

    transports.last.on_close()
    assert manager.state == ConnectionState.DISCONNECTED
    assert scheduler.timers[-1].delay == 1.0
    assert manager.attempt == 1

    scheduler.fire()
    assert manager.state == ConnectionState.CONNECTING
    transports.last.on_close()
    assert scheduler.timers[-1].delay == 2.0

    scheduler.fire()
    transports.last.on_close()
    assert scheduler.timers[-1].delay == 4.0
    assert manager.attempt == 3


def test_open_resets_attempt_counter(transports, scheduler):
    manager, _ = make_manager(transports, scheduler)
    manager.connect()
    transports.last.on_close()
    scheduler.fire()
    transports.last.on_close()
    assert manager.attempt == 2

    scheduler.fire()
    transports.last.on_open()
    assert manager.attempt == 0
    transports.last.on_close()
    assert scheduler.timers[-1].delay == 1.0


def test_error_does_not_reconnect_by_itself(transports, scheduler):
    manager, _ = make_manager(transports, scheduler)
    manager.connect()
    transports.last.on_open()
    transports.last.on_error(OSError("reset"))
    assert manager.state == ConnectionState.ERROR
    assert scheduler.timers == []
    assert not transports.last.closed


def test_disconnect_cancels_timer_and_never_reconnects(transports, scheduler):
    manager, _ = make_manager(transports, scheduler)
    manager.connect()
    transport = transports.last
    transport.on_close()
    timer = scheduler.timers[-1]

    manager.disconnect()
    assert timer.cancelled
    assert manager.state == ConnectionState.DISCONNECTED
    assert not manager.reconnect_pending

    manager.connect()
    transports.last.on_open()
    manager.disconnect()
    assert transports.last.closed
    # Late close event from the closed transport is ignored
    transports.last.on_close()
    assert len(scheduler.timers) == 1


def test_no_reconnect_when_disabled(transports, scheduler):
    manager, _ = make_manager(transports, scheduler, auto_reconnect=False)
    manager.connect()
    transports.last.on_close()
    assert manager.state == ConnectionState.DISCONNECTED
    assert scheduler.timers == []


def test_send_fails_fast_when_not_connected(transports, scheduler):
    manager, _ = make_manager(transports, scheduler)
    with pytest.raises(SessionConnectionError):
        manager.send("{}")
    manager.connect()
    with pytest.raises(SessionConnectionError):
        manager.send("{}")
    transports.last.on_open()
    manager.send("{}")
    assert transports.last.sent == ["{}"]


def test_messages_are_passed_through(transports, scheduler):
    received = []
    manager, _ = make_manager(transports, scheduler, received=received)
    manager.connect()
    transports.last.on_open()
    transports.last.on_message('{"type": "stream_start"}')
    assert received == ['{"type": "stream_start"}']


def test_events_from_stale_transport_are_ignored(transports, scheduler):
    received = []
    manager, _ = make_manager(transports, scheduler, received=received)
    manager.connect()
    stale = transports.last
    stale.on_close()
    scheduler.fire()
    fresh = transports.last
    assert fresh is not stale

    stale.on_message("late")
    stale.on_open()
    assert received == []
    assert manager.state == ConnectionState.CONNECTING
    fresh.on_open()
    assert manager.is_connected
