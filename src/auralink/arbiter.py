"""Advisory single-session lock shared between dashboard instances.

Only one dashboard instance should hold the broker session at a time.
Instances coordinate through a shared :class:`~auralink.kvstore.KeyValueStore`
holding two keys: a session marker (owner + claim time) and a heartbeat
timestamp. A lease is live while its heartbeat is younger than the stale
threshold.

The lock is advisory. Two instances racing inside the same read-then-write
window can both be admitted; the heartbeat check then stops the duplicate
from persisting past one stale period.
"""

from __future__ import annotations

import json
import logging
import secrets
import time
from collections.abc import Callable

from pydantic import BaseModel, ConfigDict, ValidationError

from auralink.kvstore import KeyValueStore

_logger = logging.getLogger(__name__)

DEFAULT_STALE_THRESHOLD: float = 15.0


def _now_ms(clock: Callable[[], float]) -> int:
    return int(clock() * 1000)


class SessionLease(BaseModel):
    """Ownership record for the single logical dashboard session."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    owner_token: str
    claimed_at_ms: int
    last_heartbeat_ms: int

    def is_live(self, now_ms: int, stale_threshold_ms: int) -> bool:
        return now_ms - self.last_heartbeat_ms < stale_threshold_ms


class _SessionMarker(BaseModel):
    model_config = ConfigDict(extra="ignore")

    owner_token: str
    claimed_at_ms: int


class SessionArbiter:
    """Claim, refresh and release the shared session lease."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        owner_token: str | None = None,
        stale_threshold: float = DEFAULT_STALE_THRESHOLD,
        clock: Callable[[], float] = time.time,
        session_key: str = "auralink_mqtt_session",
        heartbeat_key: str = "auralink_heartbeat",
    ) -> None:
        self._store = store
        self._owner_token = owner_token or secrets.token_hex(8)
        self._stale_threshold_ms = int(stale_threshold * 1000)
        self._clock = clock
        self._session_key = session_key
        self._heartbeat_key = heartbeat_key
        self._held = False

    @property
    def owner_token(self) -> str:
        return self._owner_token

    @property
    def holds_lease(self) -> bool:
        """Whether this instance believes it owns the lease."""
        return self._held

    def current_lease(self) -> SessionLease | None:
        """Read the stored lease, or ``None`` when absent or unreadable."""
        raw_marker = self._store.get(self._session_key)
        raw_heartbeat = self._store.get(self._heartbeat_key)
        if raw_marker is None or raw_heartbeat is None:
            return None
        try:
            marker = _SessionMarker.model_validate(json.loads(raw_marker))
            heartbeat_ms = int(raw_heartbeat)
        except (ValueError, ValidationError):
            _logger.debug("Ignoring malformed session lease marker=%r", raw_marker)
            return None
        return SessionLease(
            owner_token=marker.owner_token,
            claimed_at_ms=marker.claimed_at_ms,
            last_heartbeat_ms=heartbeat_ms,
        )

    def is_lease_live(self) -> bool:
        lease = self.current_lease()
        return lease is not None and lease.is_live(_now_ms(self._clock), self._stale_threshold_ms)

    def try_claim(self) -> bool:
        """Write a fresh lease unless another live lease exists."""
        now_ms = _now_ms(self._clock)
        lease = self.current_lease()
        if lease is not None and lease.is_live(now_ms, self._stale_threshold_ms):
            _logger.info(
                "Session lease is live elsewhere; age=%sms",
                now_ms - lease.last_heartbeat_ms,
            )
            return False

        marker = _SessionMarker(owner_token=self._owner_token, claimed_at_ms=now_ms)
        self._store.set(self._session_key, marker.model_dump_json())
        self._store.set(self._heartbeat_key, str(now_ms))
        self._held = True
        _logger.debug("Session lease claimed at=%s", now_ms)
        return True

    def heartbeat(self) -> None:
        """Refresh the heartbeat of the lease held by this instance."""
        if not self._held:
            return
        lease = self.current_lease()
        if lease is not None and lease.owner_token != self._owner_token:
            # Another instance judged us stale and took over.
            _logger.warning("Session lease was taken over by another instance")
            self._held = False
            return
        if lease is None and self._store.get(self._session_key) is None:
            _logger.warning("Session lease vanished from store; heartbeat skipped")
            self._held = False
            return
        self._store.set(self._heartbeat_key, str(_now_ms(self._clock)))

    def release(self) -> None:
        """Drop the lease. Never raises.

        A lease that names another owner is left alone so a late cleanup
        from a superseded instance cannot evict the current one.
        """
        self._held = False
        try:
            lease = self.current_lease()
            if lease is not None and lease.owner_token != self._owner_token:
                return
            self._store.delete(self._session_key)
            self._store.delete(self._heartbeat_key)
            _logger.debug("Session lease released")
        except Exception:
            _logger.warning("Session lease release failed", exc_info=True)
