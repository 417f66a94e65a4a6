"""paho-mqtt transport: broker address parsing, reason classification, runtime."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast
from urllib.parse import urlsplit

import paho.mqtt.client as mqtt

from auralink._redact import redact_settings
from auralink.config import DashboardConfig
from auralink.exceptions import AuralinkConfigError, BrokerTransportError, SubscriptionError, TransportInitError
from auralink.transport import (
    SubscriptionResult,
    TransportClosed,
    TransportConnected,
    TransportError,
    TransportErrorKind,
    TransportEvent,
    TransportMessage,
    TransportOffline,
    TransportReconnecting,
)

# MQTT 5 reason codes (paho maps MQTT 3.1.1 CONNACK codes onto these)
# plus the raw 3.1.1 return codes for brokers/paths that surface them.
_AUTH_REASON_CODES = frozenset({4, 5, 134, 135, 140})
_RESOURCE_REASON_CODES = frozenset({3, 136, 137, 151, 159})

_AUTH_REASON_TEXT = ("not authorized", "bad user name or password", "bad authentication")
_RESOURCE_REASON_TEXT = ("insufficient resources", "server busy", "server unavailable", "quota exceeded")

_DEFAULT_PORTS = {"mqtt": 1883, "tcp": 1883, "mqtts": 8883, "ssl": 8883, "ws": 80, "wss": 443}


@dataclass(frozen=True)
class BrokerAddress:
    scheme: str
    host: str
    port: int
    path: str

    @property
    def tls(self) -> bool:
        return self.scheme in {"mqtts", "ssl", "wss"}

    @property
    def websockets(self) -> bool:
        return self.scheme in {"ws", "wss"}


def parse_broker_url(url: str) -> BrokerAddress:
    """Split a broker URL such as ``wss://host:8884/mqtt`` into its parts."""
    value = url.strip()
    if not value:
        raise AuralinkConfigError("Broker URL is empty")
    if "://" not in value:
        value = f"mqtt://{value}"

    parts = urlsplit(value)
    scheme = parts.scheme.lower()
    if scheme not in _DEFAULT_PORTS:
        raise AuralinkConfigError(f"Unsupported broker scheme: {scheme!r}")
    if not parts.hostname:
        raise AuralinkConfigError(f"Broker URL has no host: {url!r}")
    try:
        port = parts.port or _DEFAULT_PORTS[scheme]
    except ValueError as exc:
        raise AuralinkConfigError(f"Invalid broker port in {url!r}") from exc
    path = parts.path or ("/mqtt" if scheme in {"ws", "wss"} else "")
    return BrokerAddress(scheme=scheme, host=parts.hostname, port=port, path=path)


def classify_reason(reason_code: Any) -> TransportErrorKind:
    """Map a CONNACK/DISCONNECT reason to auth, resource or other."""
    value = getattr(reason_code, "value", reason_code)
    if isinstance(value, int):
        if value in _AUTH_REASON_CODES:
            return TransportErrorKind.AUTH
        if value in _RESOURCE_REASON_CODES:
            return TransportErrorKind.RESOURCE

    text = str(reason_code).lower()
    if any(marker in text for marker in _AUTH_REASON_TEXT):
        return TransportErrorKind.AUTH
    if any(marker in text for marker in _RESOURCE_REASON_TEXT):
        return TransportErrorKind.RESOURCE
    return TransportErrorKind.OTHER


def _is_failure(reason_code: Any) -> bool:
    flag = getattr(reason_code, "is_failure", None)
    if isinstance(flag, bool):
        return flag
    value = getattr(reason_code, "value", reason_code)
    return isinstance(value, int) and value != 0


class MqttTransport:
    """Threaded paho-mqtt client that emits transport events onto an asyncio loop."""

    def __init__(
        self,
        config: DashboardConfig,
        *,
        loop: asyncio.AbstractEventLoop,
        on_event: Callable[[TransportEvent], None],
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._loop = loop
        self._on_event = on_event
        self._logger = logger or logging.getLogger(__name__)
        self._address = parse_broker_url(config.broker_url)
        self._client: mqtt.Client | None = None
        self._stopping = False
        self._network_join: asyncio.Future[None] | None = None
        self._pending_subscriptions: dict[int, str] = {}
        # SUBACK can be handled on the network thread before subscribe() returns.
        self._subscriptions_lock = threading.Lock()

    @property
    def is_connected(self) -> bool:
        client = self._client
        return client is not None and client.is_connected()

    def _emit(self, event: TransportEvent) -> None:
        self._loop.call_soon_threadsafe(self._on_event, event)

    def _build_client(self) -> mqtt.Client:
        config = self._config
        address = self._address
        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=config.client_id,
            clean_session=config.clean_session,
            protocol=mqtt.MQTTv311,
            transport="websockets" if address.websockets else "tcp",
            reconnect_on_failure=True,
        )
        client.enable_logger(self._logger)
        if address.websockets:
            client.ws_set_options(path=address.path)
        if address.tls:
            client.tls_set()
        if config.username is not None:
            client.username_pw_set(config.username, config.password)
        client.will_set(config.topics.presence, payload="offline", qos=config.qos, retain=True)
        client.reconnect_delay_set(
            min_delay=int(config.reconnect_period),
            max_delay=int(config.reconnect_period),
        )
        client.connect_timeout = config.connect_timeout

        client.on_connect = self._handle_connect
        client.on_connect_fail = self._handle_connect_fail
        client.on_disconnect = self._handle_disconnect
        client.on_message = self._handle_message
        client.on_subscribe = self._handle_subscribe
        return client

    def start(self) -> None:
        """Build the paho client and start its network loop.

        Raises :class:`TransportInitError` when the client cannot be set up.
        The TCP/websocket connection itself is established asynchronously.
        """
        self._logger.debug(
            "MQTT transport start requested %s",
            redact_settings(
                {
                    "host": self._address.host,
                    "port": self._address.port,
                    "scheme": self._address.scheme,
                    "client_id": self._config.client_id,
                    "username": self._config.username,
                    "password": self._config.password,
                }
            ),
        )
        try:
            client = self._build_client()
            client.connect_async(self._address.host, self._address.port, keepalive=self._config.keepalive)
            client.loop_start()
        except Exception as exc:
            raise TransportInitError(f"Could not start MQTT client: {exc}") from exc
        self._stopping = False
        self._client = client
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Disconnect and hand the network-loop join to the loop's executor.

        Safe to call repeatedly. ``loop_stop()`` joins paho's network thread
        and must not run on the event loop thread; await :meth:`wait_stopped`
        for the join.
        """
        client = self._client
        self._client = None
        self._stopping = True
        if client is None:
            return
        try:
            self._logger.debug("MQTT disconnect requested")
            client.disconnect()
        finally:
            self._network_join = self._loop.run_in_executor(None, self._join_network_loop, client)

    def _join_network_loop(self, client: mqtt.Client) -> None:
        client.loop_stop()
        self._logger.debug("MQTT network loop stopped")

    async def wait_stopped(self) -> None:
        """Wait until the network thread started by :meth:`start` has exited."""
        network_join = self._network_join
        if network_join is not None:
            await network_join

    def publish(self, topic: str, payload: str, *, qos: int = 0, retain: bool = False) -> None:
        client = self._client
        if client is None:
            raise BrokerTransportError(f"Cannot publish to {topic}: transport stopped")
        info = client.publish(topic, payload, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise BrokerTransportError(
                f"Publish to {topic} failed: {mqtt.error_string(info.rc)}",
                reason=str(info.rc),
            )

    def subscribe(self, topic: str, *, qos: int = 0) -> None:
        client = self._client
        if client is None:
            raise SubscriptionError(f"Cannot subscribe to {topic}: transport stopped", topic=topic)
        with self._subscriptions_lock:
            rc, mid = client.subscribe(topic, qos=qos)
            if rc == mqtt.MQTT_ERR_SUCCESS and mid is not None:
                self._pending_subscriptions[mid] = topic
                return
        raise SubscriptionError(
            f"Subscribe to {topic} failed: {mqtt.error_string(rc)}",
            topic=topic,
            reason=str(rc),
        )

    def _handle_connect(
        self,
        _client: mqtt.Client,
        _userdata: Any,
        flags: Any,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        if _is_failure(reason_code):
            self._logger.warning("MQTT connect refused: %s", reason_code)
            self._emit(TransportError(kind=classify_reason(reason_code), reason=str(reason_code)))
            return
        self._logger.debug("MQTT connected reason=%s", reason_code)
        self._emit(TransportConnected(session_present=bool(getattr(flags, "session_present", False))))

    def _handle_connect_fail(self, _client: mqtt.Client, _userdata: Any) -> None:
        self._logger.debug("MQTT connection attempt failed")
        self._emit(TransportError(kind=TransportErrorKind.OTHER, reason="connection attempt failed"))

    def _handle_disconnect(
        self,
        _client: mqtt.Client,
        _userdata: Any,
        _disconnect_flags: Any,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        with self._subscriptions_lock:
            self._pending_subscriptions.clear()
        if self._stopping:
            self._emit(TransportClosed(reason=str(reason_code)))
            return
        self._logger.debug("MQTT disconnected unexpectedly: %s", reason_code)
        self._emit(TransportOffline())
        self._emit(TransportReconnecting())

    def _handle_message(self, _client: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
        payload = msg.payload.decode("utf-8", errors="replace")
        self._emit(TransportMessage(topic=msg.topic, payload=payload))

    def _handle_subscribe(
        self,
        _client: mqtt.Client,
        _userdata: Any,
        mid: int,
        reason_code_list: list[Any],
        _properties: Any,
    ) -> None:
        with self._subscriptions_lock:
            topic = self._pending_subscriptions.pop(mid, None)
        if topic is None:
            return
        reason = reason_code_list[0] if reason_code_list else None
        granted = reason is not None and not _is_failure(reason)
        self._emit(SubscriptionResult(topic=topic, granted=granted, reason=str(reason)))
