"""Connection lifecycle for one chat session.

Explicit state machine with a single reconnect timer::

    disconnected → connecting → connected
    connected    → error
    any          → disconnected   (on close)

Reconnect delay is ``min(base * 2**attempt, max)`` milliseconds. The
manager knows nothing about chat content; inbound text frames are handed
to ``on_message`` untouched.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import StrEnum
from typing import Any, Protocol

from app.adapters.base import Transport, TransportFactory
from app.config import settings
from app.errors import SessionConnectionError

logger = logging.getLogger(__name__)


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Clock abstraction so tests can drive reconnection deterministically."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class LoopScheduler:
    """Schedules callbacks on the running asyncio loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


def reconnect_delay_ms(
    attempt: int,
    *,
    base_ms: int | None = None,
    max_ms: int | None = None,
) -> int:
    """Backoff delay for the given zero-based reconnect attempt."""
    base_ms = settings.reconnect_base_delay_ms if base_ms is None else base_ms
    max_ms = settings.reconnect_max_delay_ms if max_ms is None else max_ms
    return min(base_ms * 2**attempt, max_ms)


class ConnectionManager:
    def __init__(
        self,
        transport_factory: TransportFactory,
        *,
        on_message: Callable[[str], None],
        on_state_change: Callable[[ConnectionState], None] | None = None,
        auto_reconnect: bool | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._transport_factory = transport_factory
        self._on_message = on_message
        self._on_state_change = on_state_change
        self.auto_reconnect = settings.auto_reconnect if auto_reconnect is None else auto_reconnect
        self._scheduler = scheduler or LoopScheduler()

        self._transport: Transport | None = None
        self._timer: TimerHandle | None = None
        self.state = ConnectionState.DISCONNECTED
        self.attempt = 0
        self.last_error: Exception | None = None

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def reconnect_pending(self) -> bool:
        return self._timer is not None

    # ── Public API ───────────────────────────────────────────────────

    def connect(self) -> None:
        if self.state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            return
        self._cancel_timer()
        stale, self._transport = self._transport, None
        if stale is not None:
            stale.close()
        self._set_state(ConnectionState.CONNECTING)

        transport: Transport | None = None
        try:
            transport = self._build_transport()
            self._transport = transport
            transport.open()
        except Exception as exc:
            logger.warning("Failed to open chat transport: %s", exc)
            self.last_error = exc
            if transport is not None:
                transport.close()
            self._transport = None
            self._set_state(ConnectionState.ERROR)

    def disconnect(self) -> None:
        """Stop listening and reconnecting. Never schedules another attempt."""
        self._cancel_timer()
        transport, self._transport = self._transport, None
        if transport is not None:
            transport.close()
        self._set_state(ConnectionState.DISCONNECTED)

    def send(self, data: str) -> None:
        """Write one frame, failing fast when not connected."""
        if self.state != ConnectionState.CONNECTED or self._transport is None:
            raise SessionConnectionError(f"Not connected (state={self.state.value})")
        self._transport.send(data)

    # ── Transport events ─────────────────────────────────────────────

    def _build_transport(self) -> Transport:
        transport: Transport | None = None

        def current() -> bool:
            # Events from a replaced or disconnected transport are ignored
            return transport is not None and transport is self._transport

        def on_open() -> None:
            if current():
                self._handle_open()

        def on_message(raw: str) -> None:
            if current():
                self._on_message(raw)

        def on_close() -> None:
            if current():
                self._handle_close()

        def on_error(exc: Exception) -> None:
            if current():
                self._handle_error(exc)

        transport = self._transport_factory(
            on_open=on_open, on_message=on_message, on_close=on_close, on_error=on_error
        )
        return transport

    def _handle_open(self) -> None:
        logger.info("Chat connection open")
        self.attempt = 0
        self.last_error = None
        self._set_state(ConnectionState.CONNECTED)

    def _handle_error(self, exc: Exception) -> None:
        # The transport's own close event drives reconnection
        logger.warning("Chat connection error: %s", exc)
        self.last_error = exc
        self._set_state(ConnectionState.ERROR)

    def _handle_close(self) -> None:
        self._transport = None
        self._set_state(ConnectionState.DISCONNECTED)
        if not self.auto_reconnect:
            return
        delay = reconnect_delay_ms(self.attempt)
        self.attempt += 1
        logger.info("Reconnecting in %dms (attempt %d)", delay, self.attempt)
        self._cancel_timer()
        self._timer = self._scheduler.call_later(delay / 1000, self._reconnect)

    def _reconnect(self) -> None:
        self._timer = None
        self.connect()

    # ── Helpers ──────────────────────────────────────────────────────

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _set_state(self, state: ConnectionState) -> None:
        if state == self.state:
            return
        logger.debug("Connection state %s → %s", self.state.value, state.value)
        self.state = state
        if self._on_state_change:
            self._on_state_change(state)

    def describe(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "attempt": self.attempt,
            "reconnect_pending": self.reconnect_pending,
            "last_error": str(self.last_error) if self.last_error else None,
        }
