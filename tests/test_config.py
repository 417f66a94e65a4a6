from __future__ import annotations

import dataclasses

import pytest

from auralink.config import DashboardConfig, TopicMap
from auralink.exceptions import AuralinkConfigError


def test_defaults_match_broker_contract() -> None:
    config = DashboardConfig()

    assert config.clean_session is False
    assert config.keepalive == 30
    assert config.connect_timeout == 10.0
    assert config.reconnect_period == 10.0
    assert config.qos == 0
    assert config.heartbeat_interval < config.stale_threshold
    assert config.window_size == 20


def test_topic_sets() -> None:
    topics = TopicMap()

    assert len(topics.subscribe_topics) == 6
    assert topics.retained_topics[0] == topics.presence
    assert set(topics.subscribe_topics) < set(topics.retained_topics)
    assert topics.control not in topics.subscribe_topics


def test_topic_map_only_names_topics_the_dashboard_uses() -> None:
    topics = TopicMap()

    published = {topics.presence, topics.control}

    assert set(dataclasses.astuple(topics)) == set(topics.subscribe_topics) | published


def test_heartbeat_must_be_below_stale_threshold() -> None:
    with pytest.raises(AuralinkConfigError):
        DashboardConfig(heartbeat_interval=15.0, stale_threshold=15.0)


def test_window_size_must_be_positive() -> None:
    with pytest.raises(AuralinkConfigError):
        DashboardConfig(window_size=0)


def test_from_env_reads_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AURALINK_BROKER_URL", "wss://broker.example:8884/mqtt")
    monkeypatch.setenv("AURALINK_USERNAME", "dash")
    monkeypatch.setenv("AURALINK_HEARTBEAT_INTERVAL", "5")
    monkeypatch.setenv("AURALINK_STALE_THRESHOLD", "30")
    monkeypatch.setenv("AURALINK_WINDOW_SIZE", "50")
    monkeypatch.setenv("AURALINK_CLEAN_SESSION", "yes")

    config = DashboardConfig.from_env()

    assert config.broker_url == "wss://broker.example:8884/mqtt"
    assert config.username == "dash"
    assert config.heartbeat_interval == 5.0
    assert config.stale_threshold == 30.0
    assert config.window_size == 50
    assert config.clean_session is True


def test_from_env_overrides_win(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AURALINK_WINDOW_SIZE", "50")
    monkeypatch.setenv("AURALINK_CLIENT_ID", "from-env")

    config = DashboardConfig.from_env(window_size=10, client_id="explicit")

    assert config.window_size == 10
    assert config.client_id == "explicit"


def test_from_env_rejects_bad_numbers(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AURALINK_KEEPALIVE", "soon")

    with pytest.raises(AuralinkConfigError):
        DashboardConfig.from_env()
