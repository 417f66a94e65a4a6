"""Custom exception hierarchy for auralink."""

from __future__ import annotations


class AuralinkError(Exception):
    """Base exception for all auralink errors."""


class AuralinkConfigError(AuralinkError):
    """Invalid or missing configuration."""


class SessionConflictError(AuralinkError):
    """Another dashboard instance holds a live session lease."""


class BrokerError(AuralinkError):
    """Broker-level failure reported by the transport."""

    def __init__(self, message: str, *, reason: str = "") -> None:
        self.reason = reason
        super().__init__(message)


class BrokerAuthError(BrokerError):
    """Broker rejected the credentials.

    Fatal: the connection manager does not retry on its own after this.
    """


class ServerBusyError(BrokerError):
    """Broker refused the connection for lack of resources.

    Recovery is left to the transport's fixed reconnect schedule.
    """


class BrokerTransportError(BrokerError):
    """Generic connectivity failure (socket, TLS, timeout)."""


class TransportInitError(AuralinkError):
    """The transport could not be constructed or started.

    Raised before any network activity happens. The caller has to issue
    a fresh ``connect()`` to try again.
    """


class SubscriptionError(BrokerError):
    """Subscribe request for a single topic was refused or could not be sent."""

    def __init__(self, message: str, *, topic: str, reason: str = "") -> None:
        self.topic = topic
        super().__init__(message, reason=reason)
