"""Connection lifecycle for the single dashboard broker session.

Owns:
- admission through the :class:`~auralink.arbiter.SessionArbiter`
- the transport instance and its event stream
- the connection state machine
- presence announcements, delayed subscriptions and the lease heartbeat
- teardown: retained-state purge, offline presence and lease release

Every transition happens in :meth:`ConnectionManager.handle`, called on
the event loop thread. Transport-level failures end up as a
:class:`ConnectionState`; they are never raised to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import StrEnum

from auralink.arbiter import SessionArbiter
from auralink.config import DashboardConfig
from auralink.exceptions import (
    AuralinkError,
    BrokerError,
    SessionConflictError,
    SubscriptionError,
    TransportInitError,
)
from auralink.scheduler import Scheduler, TimerHandle
from auralink.transport import (
    SubscriptionResult,
    Transport,
    TransportClosed,
    TransportConnected,
    TransportError,
    TransportErrorKind,
    TransportEvent,
    TransportMessage,
    TransportOffline,
    TransportReconnecting,
)

TransportFactory = Callable[[DashboardConfig, Callable[[TransportEvent], None]], Transport]


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED_UNSTABLE = "connected_unstable"
    CONNECTED_STABLE = "connected_stable"
    RECONNECTING = "reconnecting"
    OFFLINE = "offline"
    ERROR = "error"
    AUTH_ERROR = "auth_error"
    SERVER_BUSY = "server_busy"
    INIT_ERROR = "init_error"
    SESSION_CONFLICT = "session_conflict"

    @property
    def is_fatal(self) -> bool:
        """Needs an explicit ``connect()`` from the caller to leave."""
        return self in (ConnectionState.AUTH_ERROR, ConnectionState.INIT_ERROR)

    @property
    def is_connected(self) -> bool:
        return self in (ConnectionState.CONNECTED_UNSTABLE, ConnectionState.CONNECTED_STABLE)


class SubscriptionStatus(StrEnum):
    PENDING = "pending"
    GRANTED = "granted"
    FAILED = "failed"


_ERROR_STATES: dict[TransportErrorKind, ConnectionState] = {
    TransportErrorKind.AUTH: ConnectionState.AUTH_ERROR,
    TransportErrorKind.RESOURCE: ConnectionState.SERVER_BUSY,
    TransportErrorKind.OTHER: ConnectionState.ERROR,
}

# States from which a close/disconnect event triggers full teardown.
_TEARDOWN_STATES = frozenset(
    {
        ConnectionState.CONNECTING,
        ConnectionState.CONNECTED_UNSTABLE,
        ConnectionState.CONNECTED_STABLE,
        ConnectionState.RECONNECTING,
        ConnectionState.OFFLINE,
        ConnectionState.ERROR,
        ConnectionState.SERVER_BUSY,
    }
)


class ConnectionManager:
    """State machine owning the broker transport for one dashboard instance."""

    def __init__(
        self,
        config: DashboardConfig,
        arbiter: SessionArbiter,
        transport_factory: TransportFactory,
        scheduler: Scheduler,
        *,
        on_message: Callable[[str, str], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._arbiter = arbiter
        self._transport_factory = transport_factory
        self._scheduler = scheduler
        self._on_message = on_message
        self._logger = logger or logging.getLogger(__name__)

        self._state = ConnectionState.DISCONNECTED
        self._transport: Transport | None = None
        # Transports detached from the state machine whose stop has not been awaited.
        self._detached: list[Transport] = []
        self._generation = 0
        self._connect_in_flight = False
        self._last_error: AuralinkError | None = None

        self._heartbeat_timer: TimerHandle | None = None
        self._stabilize_timer: TimerHandle | None = None
        self._subscribe_timer: TimerHandle | None = None

        self._subscriptions: dict[str, SubscriptionStatus] = {}
        self._state_listeners: list[Callable[[ConnectionState], None]] = []

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_stable(self) -> bool:
        return self._state == ConnectionState.CONNECTED_STABLE

    @property
    def last_error(self) -> AuralinkError | None:
        """Most recent failure absorbed into the connection state."""
        return self._last_error

    @property
    def subscriptions(self) -> dict[str, SubscriptionStatus]:
        return dict(self._subscriptions)

    @property
    def heartbeat_active(self) -> bool:
        return self._heartbeat_timer is not None

    def add_state_listener(self, callback: Callable[[ConnectionState], None]) -> None:
        self._state_listeners.append(callback)

    def connect(self) -> None:
        """Start a connection attempt unless one is running or active."""
        if self._connect_in_flight or self._transport is not None:
            self._logger.debug("Connect skipped: attempt in flight or transport active")
            return

        if not self._arbiter.try_claim():
            self._last_error = SessionConflictError("Another dashboard instance holds the session")
            self._set_state(ConnectionState.SESSION_CONFLICT)
            return

        self._connect_in_flight = True
        self._generation += 1
        generation = self._generation
        self._subscriptions = {}

        def on_event(event: TransportEvent) -> None:
            if generation == self._generation:
                self.handle(event)

        try:
            transport = self._transport_factory(self._config, on_event)
            transport.start()
        except Exception as exc:
            self._logger.error("Transport initialisation failed: %s", exc, exc_info=True)
            self._connect_in_flight = False
            self._generation += 1
            self._last_error = exc if isinstance(exc, TransportInitError) else TransportInitError(str(exc))
            self._arbiter.release()
            self._set_state(ConnectionState.INIT_ERROR)
            return

        self._transport = transport
        self._set_state(ConnectionState.CONNECTING)

    def handle(self, event: TransportEvent) -> None:
        """Apply one transport event to the state machine."""
        if self._transport is None:
            self._logger.debug("Dropping %s: no active transport", type(event).__name__)
            return

        if isinstance(event, TransportMessage):
            self._deliver(event)
        elif isinstance(event, TransportConnected):
            self._on_connected(event)
        elif isinstance(event, SubscriptionResult):
            self._on_subscription_result(event)
        elif isinstance(event, TransportError):
            self._on_error(event)
        elif isinstance(event, TransportOffline):
            self._cancel_connect_timers()
            self._set_state(ConnectionState.OFFLINE)
        elif isinstance(event, TransportReconnecting):
            self._cancel_connect_timers()
            self._set_state(ConnectionState.RECONNECTING)
        elif isinstance(event, TransportClosed):
            self._on_closed(event)

    def request_refresh(self) -> bool:
        """Ask the device for a fresh reading on the control topic."""
        transport = self._transport
        if transport is None or not self._state.is_connected:
            return False
        try:
            transport.publish(self._config.topics.control, "refresh", qos=self._config.qos)
        except BrokerError as exc:
            self._logger.warning("Refresh command not sent: %s", exc)
            return False
        self._logger.debug("Refresh command published")
        return True

    def shutdown(self) -> None:
        """Tear the session down. Always releases the lease.

        Final publishes are attempted best-effort; the transport itself is
        stopped after ``shutdown_grace`` so they get a chance to flush.
        """
        self._teardown(purge=True)
        self._set_state(ConnectionState.DISCONNECTED)

    async def aclose(self) -> None:
        """Async variant of :meth:`shutdown`.

        Waits out the grace delay, then stops every detached transport and
        waits for its network loop to exit.
        """
        self.shutdown()
        await asyncio.sleep(self._config.shutdown_grace)
        while self._detached:
            transport = self._detached.pop()
            try:
                transport.stop()
                await transport.wait_stopped()
            except Exception:
                self._logger.warning("Transport stop failed", exc_info=True)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        previous = self._state
        self._state = state
        self._logger.info("Connection state %s -> %s", previous, state)
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:
                self._logger.warning("Connection state listener failed", exc_info=True)

    def _on_connected(self, event: TransportConnected) -> None:
        transport = self._transport
        assert transport is not None
        self._connect_in_flight = False
        self._last_error = None
        self._set_state(ConnectionState.CONNECTED_UNSTABLE)
        self._logger.debug("Broker session present=%s", event.session_present)

        try:
            transport.publish(self._config.topics.presence, "online", qos=self._config.qos, retain=True)
        except BrokerError as exc:
            self._logger.warning("Online presence not published: %s", exc)

        self._start_heartbeat()
        self._cancel_connect_timers()
        self._stabilize_timer = self._scheduler.call_later(self._config.stabilize_delay, self._on_stabilized)
        self._subscribe_timer = self._scheduler.call_later(self._config.subscribe_delay, self._subscribe_all)

    def _on_stabilized(self) -> None:
        self._stabilize_timer = None
        if self._state == ConnectionState.CONNECTED_UNSTABLE:
            self._set_state(ConnectionState.CONNECTED_STABLE)

    def _subscribe_all(self) -> None:
        self._subscribe_timer = None
        transport = self._transport
        if transport is None or not transport.is_connected:
            self._logger.warning("Transport went away before subscriptions could be issued")
            return

        for topic in self._config.topics.subscribe_topics:
            self._subscriptions[topic] = SubscriptionStatus.PENDING
            try:
                transport.subscribe(topic, qos=self._config.qos)
                self._logger.debug("Subscribe issued topic=%s", topic)
            except SubscriptionError as exc:
                self._subscriptions[topic] = SubscriptionStatus.FAILED
                self._logger.warning("Subscription to %s failed: %s", topic, exc)

    def _on_subscription_result(self, event: SubscriptionResult) -> None:
        if event.granted:
            self._subscriptions[event.topic] = SubscriptionStatus.GRANTED
            self._logger.debug("Subscribed topic=%s", event.topic)
        else:
            self._subscriptions[event.topic] = SubscriptionStatus.FAILED
            self._logger.warning("Broker refused subscription topic=%s reason=%s", event.topic, event.reason)
        if all(status != SubscriptionStatus.PENDING for status in self._subscriptions.values()):
            self._logger.debug("All subscriptions completed")

    def _on_error(self, event: TransportError) -> None:
        self._connect_in_flight = False
        self._cancel_connect_timers()
        self._last_error = event.as_exception()
        self._logger.warning("Transport error: %s", self._last_error)
        state = _ERROR_STATES[event.kind]
        if state.is_fatal:
            # No automatic retry: drop the transport and its reconnect loop.
            transport = self._transport
            self._transport = None
            self._generation += 1
            self._stop_heartbeat()
            self._arbiter.release()
            if transport is not None:
                self._stop_transport(transport)
        self._set_state(state)

    def _on_closed(self, event: TransportClosed) -> None:
        # Terminal close reported by a transport the manager still owns.
        # MqttTransport only closes after stop(), when it is already detached.
        self._logger.debug("Transport closed reason=%s", event.reason)
        self._teardown(purge=self._state in _TEARDOWN_STATES)
        self._set_state(ConnectionState.DISCONNECTED)

    def _deliver(self, event: TransportMessage) -> None:
        if self._on_message is None:
            return
        try:
            self._on_message(event.topic, event.payload)
        except Exception:
            self._logger.warning("Message handler failed topic=%s", event.topic, exc_info=True)

    # ------------------------------------------------------------------
    # Timers and cleanup
    # ------------------------------------------------------------------

    def _start_heartbeat(self) -> None:
        if self._heartbeat_timer is not None:
            return
        self._heartbeat_timer = self._scheduler.call_later(self._config.heartbeat_interval, self._heartbeat_tick)

    def _heartbeat_tick(self) -> None:
        self._heartbeat_timer = None
        if self._transport is None:
            return
        try:
            self._arbiter.heartbeat()
        except Exception:
            self._logger.warning("Session heartbeat failed", exc_info=True)
        self._heartbeat_timer = self._scheduler.call_later(self._config.heartbeat_interval, self._heartbeat_tick)

    def _stop_heartbeat(self) -> None:
        timer = self._heartbeat_timer
        self._heartbeat_timer = None
        if timer is not None:
            timer.cancel()

    def _cancel_connect_timers(self) -> None:
        for timer in (self._stabilize_timer, self._subscribe_timer):
            if timer is not None:
                timer.cancel()
        self._stabilize_timer = None
        self._subscribe_timer = None

    def _teardown(self, *, purge: bool) -> None:
        """Detach the transport, stop timers and release the lease.

        The transport is stopped after ``shutdown_grace`` so the final
        publishes can flush. The lease is released even when cleanup fails.
        """
        transport = self._transport
        self._transport = None
        self._generation += 1
        self._connect_in_flight = False
        try:
            self._cancel_connect_timers()
            self._stop_heartbeat()
            if transport is not None:
                if purge:
                    self._purge_session(transport)
                self._detach(transport)
                self._scheduler.call_later(
                    self._config.shutdown_grace,
                    lambda: self._stop_transport(transport),
                )
        finally:
            self._arbiter.release()

    def _purge_session(self, transport: Transport) -> None:
        """Clear retained topics and announce offline; failures are logged only."""
        for topic in self._config.topics.retained_topics:
            try:
                transport.publish(topic, "", qos=self._config.qos, retain=True)
            except Exception as exc:
                self._logger.warning("Could not clear retained message topic=%s: %s", topic, exc)
        try:
            transport.publish(self._config.topics.presence, "offline", qos=self._config.qos, retain=True)
        except Exception as exc:
            self._logger.warning("Offline presence not published: %s", exc)

    def _detach(self, transport: Transport) -> None:
        if transport not in self._detached:
            self._detached.append(transport)

    def _stop_transport(self, transport: Transport) -> None:
        self._detach(transport)
        try:
            transport.stop()
        except Exception:
            self._logger.warning("Transport stop failed", exc_info=True)
