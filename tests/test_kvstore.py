from __future__ import annotations

from pathlib import Path

import pytest

from auralink.arbiter import SessionArbiter
from auralink.kvstore import FileKeyValueStore


def test_file_store_round_trip_and_delete(tmp_path: Path) -> None:
    store = FileKeyValueStore(tmp_path / "session")

    assert store.get("auralink_heartbeat") is None
    store.set("auralink_heartbeat", "123")
    assert store.get("auralink_heartbeat") == "123"

    store.delete("auralink_heartbeat")
    store.delete("auralink_heartbeat")
    assert store.get("auralink_heartbeat") is None


def test_file_store_leaves_no_temp_files(tmp_path: Path) -> None:
    store = FileKeyValueStore(tmp_path)

    store.set("key", "one")
    store.set("key", "two")

    assert sorted(p.name for p in tmp_path.iterdir()) == ["key"]


def test_file_store_rejects_path_like_keys(tmp_path: Path) -> None:
    store = FileKeyValueStore(tmp_path)

    with pytest.raises(ValueError):
        store.set("../escape", "x")


def test_file_store_shared_between_arbiters(tmp_path: Path) -> None:
    now = 5_000.0
    first = SessionArbiter(FileKeyValueStore(tmp_path), owner_token="a", clock=lambda: now)
    second = SessionArbiter(FileKeyValueStore(tmp_path), owner_token="b", clock=lambda: now)

    assert first.try_claim()
    assert not second.try_claim()

    first.release()
    assert second.try_claim()
