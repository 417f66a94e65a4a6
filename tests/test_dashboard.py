from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from auralink.config import DashboardConfig
from auralink.dashboard import Dashboard
from auralink.kvstore import InMemoryKeyValueStore
from auralink.manager import ConnectionState
from auralink.scheduler import VirtualScheduler
from auralink.transport import TransportConnected, TransportEvent, TransportMessage
from auralink.window import SensorSeries

CONFIG = DashboardConfig()


class _RecordingTransport:
    def __init__(self, on_event: Callable[[TransportEvent], None]) -> None:
        self.on_event = on_event
        self.connected = False
        self.stopped = False
        self.published: list[tuple[str, str]] = []

    @property
    def is_connected(self) -> bool:
        return self.connected

    def start(self) -> None:
        pass

    def stop(self) -> None:
        self.stopped = True

    async def wait_stopped(self) -> None:
        pass

    def publish(self, topic: str, payload: str, *, qos: int = 0, retain: bool = False) -> None:
        self.published.append((topic, payload))

    def subscribe(self, topic: str, *, qos: int = 0) -> None:
        pass


@pytest.mark.asyncio
async def test_dashboard_routes_messages_into_snapshot() -> None:
    scheduler = VirtualScheduler()
    transports: list[_RecordingTransport] = []
    states: list[ConnectionState] = []

    def factory(_config: DashboardConfig, on_event: Callable[[TransportEvent], None]) -> _RecordingTransport:
        transport = _RecordingTransport(on_event)
        transports.append(transport)
        return transport

    dashboard = Dashboard(
        CONFIG,
        store=InMemoryKeyValueStore(),
        transport_factory=factory,
        scheduler=scheduler,
        on_state=states.append,
    )
    async with dashboard:
        assert transports == []
        scheduler.advance(CONFIG.initial_connect_delay)
        transport = transports[0]
        transport.connected = True
        transport.on_event(TransportConnected())
        transport.on_event(TransportMessage(CONFIG.topics.temperature, "21.5"))
        transport.on_event(TransportMessage(CONFIG.topics.email_summary, "2 new"))
        scheduler.advance(CONFIG.stabilize_delay)

        snapshot = dashboard.snapshot()
        assert snapshot.connection_state == ConnectionState.CONNECTED_STABLE.value
        assert snapshot.stable is True
        assert snapshot.series[SensorSeries.TEMPERATURE] == [21.5]
        assert snapshot.auxiliary.email_summary == "2 new"
        assert dashboard.refresh() is True

    assert (CONFIG.topics.presence, "offline") in transport.published
    assert transport.stopped
    assert dashboard.manager.state == ConnectionState.DISCONNECTED
    assert states[0] == ConnectionState.CONNECTING


@pytest.mark.asyncio
async def test_dashboard_exit_before_first_connect_never_connects() -> None:
    calls: list[int] = []

    def factory(_config: DashboardConfig, on_event: Callable[[TransportEvent], None]) -> _RecordingTransport:
        calls.append(1)
        return _RecordingTransport(on_event)

    async with Dashboard(CONFIG, transport_factory=factory):
        pass
    await asyncio.sleep(CONFIG.initial_connect_delay + 0.05)

    assert calls == []


def test_snapshot_before_start_is_empty() -> None:
    dashboard = Dashboard(CONFIG)

    snapshot = dashboard.snapshot()

    assert snapshot.labels == []
    assert snapshot.connection_state is None
    with pytest.raises(RuntimeError):
        dashboard.refresh()
