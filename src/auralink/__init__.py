"""auralink - Live telemetry dashboard client for MQTT sensor streams."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("auralink")
except PackageNotFoundError:
    __version__ = "0+local"
from auralink.arbiter import SessionArbiter, SessionLease
from auralink.config import DashboardConfig, TopicMap
from auralink.dashboard import Dashboard
from auralink.exceptions import (
    AuralinkConfigError,
    AuralinkError,
    BrokerAuthError,
    BrokerError,
    BrokerTransportError,
    ServerBusyError,
    SessionConflictError,
    SubscriptionError,
    TransportInitError,
)
from auralink.kvstore import FileKeyValueStore, InMemoryKeyValueStore, KeyValueStore
from auralink.manager import ConnectionManager, ConnectionState, SubscriptionStatus
from auralink.router import AuxiliaryLatest, DashboardSnapshot, MessageRouter
from auralink.scheduler import AsyncioScheduler, Scheduler, VirtualScheduler
from auralink.window import SensorSeries, TimeSeriesWindow, TimeSlot, time_label

__all__ = [
    "__version__",
    "AsyncioScheduler",
    "AuralinkConfigError",
    "AuralinkError",
    "AuxiliaryLatest",
    "BrokerAuthError",
    "BrokerError",
    "BrokerTransportError",
    "ConnectionManager",
    "ConnectionState",
    "Dashboard",
    "DashboardConfig",
    "DashboardSnapshot",
    "FileKeyValueStore",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "MessageRouter",
    "Scheduler",
    "SensorSeries",
    "ServerBusyError",
    "SessionArbiter",
    "SessionConflictError",
    "SessionLease",
    "SubscriptionError",
    "SubscriptionStatus",
    "TimeSeriesWindow",
    "TimeSlot",
    "TopicMap",
    "TransportInitError",
    "VirtualScheduler",
    "time_label",
]
