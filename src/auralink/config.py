"""Client configuration for auralink."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from auralink.exceptions import AuralinkConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class TopicMap:
    """Broker topic names used by the dashboard.

    The six sensor/indicator topics are consumed; ``presence`` and
    ``control`` are published to.
    """

    temperature: str = "esp32/sensors/temperature"
    humidity: str = "esp32/sensors/humidity"
    air_quality: str = "esp32/sensors/mq135"
    led: str = "esp32/sensors/led"
    display: str = "esp32/display"
    email_summary: str = "esp32/email_summary"
    presence: str = "auralink/dashboard/status"
    control: str = "esp32/control"

    @property
    def subscribe_topics(self) -> tuple[str, ...]:
        """Consumed topics, in subscription order."""
        return (
            self.temperature,
            self.humidity,
            self.air_quality,
            self.led,
            self.display,
            self.email_summary,
        )

    @property
    def retained_topics(self) -> tuple[str, ...]:
        """Topics whose retained broker state is purged on teardown."""
        return (self.presence, *self.subscribe_topics)


@dataclasses.dataclass(frozen=True)
class DashboardConfig:
    """Dashboard connection configuration.

    Parameters
    ----------
    broker_url : str
        Broker URL. ``wss://`` selects websockets over TLS,
        ``mqtts://`` plain TLS, ``mqtt://``/``tcp://`` plain TCP.
    username : str or None
        Broker username.
    password : str or None
        Broker password.
    client_id : str
        Fixed client identifier. Kept constant so the broker reuses one
        persistent session instead of accumulating new ones.
    clean_session : bool
        Request a clean broker session. Defaults to ``False``.
    keepalive : int
        MQTT keepalive in seconds.
    connect_timeout : float
        Seconds to wait for CONNACK before the attempt is abandoned.
    reconnect_period : float
        Fixed delay in seconds between the transport's reconnect attempts.
    qos : int
        Delivery assurance level for every publish/subscribe.
    stabilize_delay : float
        Seconds after connect before the connection is reported stable.
    subscribe_delay : float
        Seconds after connect before the subscription burst is issued.
    heartbeat_interval : float
        Session lease heartbeat period in seconds. Must be strictly lower
        than ``stale_threshold``.
    stale_threshold : float
        Age in seconds after which another instance's lease is considered
        abandoned.
    window_size : int
        Number of time slots kept for charting.
    shutdown_grace : float
        Seconds granted to final publishes before the transport is stopped.
    initial_connect_delay : float
        Delay in seconds before the dashboard's first connection attempt.
    session_key : str
        Key of the session-active marker in the shared key-value store.
    heartbeat_key : str
        Key of the heartbeat timestamp in the shared key-value store.
    session_store_path : str or None
        Directory for the file-backed session store. ``None`` keeps the
        store in memory (single process only).
    topics : TopicMap
        Topic names.
    """

    broker_url: str = "mqtt://localhost:1883"
    username: str | None = None
    password: str | None = None
    client_id: str = "auralink_dashboard_single"
    clean_session: bool = False
    keepalive: int = 30
    connect_timeout: float = 10.0
    reconnect_period: float = 10.0
    qos: int = 0
    stabilize_delay: float = 3.0
    subscribe_delay: float = 1.0
    heartbeat_interval: float = 10.0
    stale_threshold: float = 15.0
    window_size: int = 20
    shutdown_grace: float = 0.1
    initial_connect_delay: float = 0.5
    session_key: str = "auralink_mqtt_session"
    heartbeat_key: str = "auralink_heartbeat"
    session_store_path: str | None = None
    topics: TopicMap = dataclasses.field(default_factory=TopicMap)

    def __post_init__(self) -> None:
        if self.heartbeat_interval <= 0:
            raise AuralinkConfigError("heartbeat_interval must be positive")
        if self.heartbeat_interval >= self.stale_threshold:
            raise AuralinkConfigError(
                f"heartbeat_interval ({self.heartbeat_interval}s) must be lower than "
                f"stale_threshold ({self.stale_threshold}s)"
            )
        if self.window_size < 1:
            raise AuralinkConfigError("window_size must be at least 1")
        if self.qos not in (0, 1, 2):
            raise AuralinkConfigError(f"qos must be 0, 1 or 2, got {self.qos}")

    @classmethod
    def from_env(cls, **overrides: Any) -> DashboardConfig:
        """Create configuration from environment variables.

        Reads ``AURALINK_BROKER_URL``, ``AURALINK_USERNAME``,
        ``AURALINK_PASSWORD`` and the optional ``AURALINK_*`` tuning
        variables. Explicit keyword arguments override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        DashboardConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "AURALINK_BROKER_URL": "broker_url",
            "AURALINK_USERNAME": "username",
            "AURALINK_PASSWORD": "password",
            "AURALINK_CLIENT_ID": "client_id",
            "AURALINK_SESSION_STORE": "session_store_path",
        }
        _ENV_FLOAT_MAP = {
            "AURALINK_CONNECT_TIMEOUT": "connect_timeout",
            "AURALINK_RECONNECT_PERIOD": "reconnect_period",
            "AURALINK_HEARTBEAT_INTERVAL": "heartbeat_interval",
            "AURALINK_STALE_THRESHOLD": "stale_threshold",
            "AURALINK_SHUTDOWN_GRACE": "shutdown_grace",
        }
        _ENV_INT_MAP = {
            "AURALINK_KEEPALIVE": "keepalive",
            "AURALINK_WINDOW_SIZE": "window_size",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        try:
            for env_key, field_name in _ENV_FLOAT_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = float(val)
            for env_key, field_name in _ENV_INT_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = int(val)
        except ValueError as exc:
            raise AuralinkConfigError(f"Invalid numeric environment value: {exc}") from exc

        if "clean_session" not in overrides:
            config_kwargs["clean_session"] = _env_bool(env.get("AURALINK_CLEAN_SESSION"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
