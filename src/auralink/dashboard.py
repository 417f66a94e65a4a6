"""Async facade wiring the session arbiter, connection manager and router."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from auralink._mqtt import MqttTransport
from auralink.arbiter import SessionArbiter
from auralink.config import DashboardConfig
from auralink.kvstore import FileKeyValueStore, InMemoryKeyValueStore, KeyValueStore
from auralink.manager import ConnectionManager, ConnectionState, TransportFactory
from auralink.router import DashboardSnapshot, MessageRouter
from auralink.scheduler import AsyncioScheduler, Scheduler, TimerHandle
from auralink.transport import Transport, TransportEvent
from auralink.window import TimeSeriesWindow

_logger = logging.getLogger(__name__)


def _default_store(config: DashboardConfig) -> KeyValueStore:
    if config.session_store_path:
        return FileKeyValueStore(config.session_store_path)
    return InMemoryKeyValueStore()


class Dashboard:
    """Live telemetry dashboard session.

    Usage::

        async with Dashboard(DashboardConfig.from_env()) as dashboard:
            while True:
                render(dashboard.snapshot())
                await asyncio.sleep(1)
    """

    def __init__(
        self,
        config: DashboardConfig,
        *,
        store: KeyValueStore | None = None,
        transport_factory: TransportFactory | None = None,
        scheduler: Scheduler | None = None,
        on_state: Callable[[ConnectionState], None] | None = None,
    ) -> None:
        self._config = config
        self._store = store if store is not None else _default_store(config)
        self._transport_factory = transport_factory
        self._scheduler = scheduler
        self._on_state = on_state
        self._window = TimeSeriesWindow(capacity=config.window_size)
        self._router = MessageRouter(self._window, config.topics)
        self._manager: ConnectionManager | None = None
        self._connect_timer: TimerHandle | None = None

    @property
    def manager(self) -> ConnectionManager:
        if self._manager is None:
            raise RuntimeError("Dashboard is not started; use 'async with Dashboard(...)'")
        return self._manager

    @property
    def router(self) -> MessageRouter:
        return self._router

    async def __aenter__(self) -> Dashboard:
        loop = asyncio.get_running_loop()
        scheduler = self._scheduler or AsyncioScheduler(loop)
        arbiter = SessionArbiter(
            self._store,
            stale_threshold=self._config.stale_threshold,
            clock=scheduler.time,
            session_key=self._config.session_key,
            heartbeat_key=self._config.heartbeat_key,
        )

        def mqtt_factory(config: DashboardConfig, on_event: Callable[[TransportEvent], None]) -> Transport:
            return MqttTransport(config, loop=loop, on_event=on_event)

        factory = self._transport_factory or mqtt_factory

        self._manager = ConnectionManager(
            self._config,
            arbiter,
            factory,
            scheduler,
            on_message=self._router.route,
        )
        if self._on_state is not None:
            self._manager.add_state_listener(self._on_state)

        self._connect_timer = scheduler.call_later(self._config.initial_connect_delay, self._manager.connect)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        manager = self._manager
        if self._connect_timer is not None:
            self._connect_timer.cancel()
            self._connect_timer = None
        if manager is None:
            return
        try:
            await manager.aclose()
        except Exception:
            _logger.warning("Dashboard shutdown failed", exc_info=True)

    def snapshot(self) -> DashboardSnapshot:
        manager = self._manager
        if manager is None:
            return self._router.snapshot()
        return self._router.snapshot(connection_state=manager.state.value, stable=manager.is_stable)

    def refresh(self) -> bool:
        """Publish a manual refresh request; ``False`` when not connected."""
        return self.manager.request_refresh()
