"""Transport boundary: broker events and the transport protocol.

Transport callbacks are converted into the closed set of event types below
and fed to :meth:`ConnectionManager.handle` one at a time, in delivery order.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

from auralink.exceptions import BrokerAuthError, BrokerError, BrokerTransportError, ServerBusyError


class TransportErrorKind(StrEnum):
    AUTH = "auth"
    RESOURCE = "resource"
    OTHER = "other"


@dataclass(frozen=True)
class TransportConnected:
    """Broker acknowledged the connection."""

    session_present: bool = False


@dataclass(frozen=True)
class TransportMessage:
    topic: str
    payload: str


@dataclass(frozen=True)
class TransportError:
    kind: TransportErrorKind
    reason: str = ""

    def as_exception(self) -> BrokerError:
        """Exception instance matching this error, for reporting."""
        if self.kind == TransportErrorKind.AUTH:
            return BrokerAuthError(f"Broker rejected credentials: {self.reason}", reason=self.reason)
        if self.kind == TransportErrorKind.RESOURCE:
            return ServerBusyError(f"Broker is out of resources: {self.reason}", reason=self.reason)
        return BrokerTransportError(f"Broker connection error: {self.reason}", reason=self.reason)


@dataclass(frozen=True)
class TransportOffline:
    """Connection lost; the transport will retry on its own schedule."""


@dataclass(frozen=True)
class TransportReconnecting:
    """Transport started a reconnect attempt."""


@dataclass(frozen=True)
class TransportClosed:
    """Transport stopped for good; no further reconnects."""

    reason: str = ""


@dataclass(frozen=True)
class SubscriptionResult:
    topic: str
    granted: bool
    reason: str = ""


TransportEvent = (
    TransportConnected
    | TransportMessage
    | TransportError
    | TransportOffline
    | TransportReconnecting
    | TransportClosed
    | SubscriptionResult
)


class Transport(Protocol):
    """Broker connection driven by :class:`~auralink.manager.ConnectionManager`.

    ``publish`` and ``subscribe`` raise :class:`~auralink.exceptions.BrokerError`
    subclasses when the request cannot be queued. Asynchronous outcomes
    (SUBACK, connection loss) arrive as events. ``stop`` returns without
    blocking; ``wait_stopped`` completes once the connection is fully down.
    """

    @property
    def is_connected(self) -> bool: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...

    async def wait_stopped(self) -> None: ...

    def publish(self, topic: str, payload: str, *, qos: int = 0, retain: bool = False) -> None: ...

    def subscribe(self, topic: str, *, qos: int = 0) -> None: ...
