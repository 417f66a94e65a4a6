from __future__ import annotations

from datetime import datetime

from auralink.config import TopicMap
from auralink.router import NO_READING, MessageRouter
from auralink.window import SensorSeries, TimeSeriesWindow

TOPICS = TopicMap()


class _LabelClock:
    def __init__(self) -> None:
        self.moment = datetime(2026, 1, 1, 10, 0, 0)

    def __call__(self) -> datetime:
        return self.moment

    def tick(self, second: int) -> None:
        self.moment = self.moment.replace(second=second)


def _router() -> tuple[MessageRouter, TimeSeriesWindow, _LabelClock]:
    clock = _LabelClock()
    window = TimeSeriesWindow()
    return MessageRouter(window, TOPICS, label_clock=clock), window, clock


def test_numeric_topics_feed_the_window() -> None:
    router, window, _clock = _router()

    router.route(TOPICS.temperature, "21.5")
    router.route(TOPICS.humidity, "60")

    assert window.labels == ["10:00:00"]
    assert window.slots()[0].values == {
        SensorSeries.TEMPERATURE: 21.5,
        SensorSeries.HUMIDITY: 60.0,
        SensorSeries.AIR_QUALITY: None,
    }


def test_non_numeric_payload_leaves_forward_filled_value() -> None:
    router, window, clock = _router()
    router.route(TOPICS.temperature, "21.5")
    router.route(TOPICS.humidity, "60")

    clock.tick(1)
    router.route(TOPICS.humidity, "61")
    router.route(TOPICS.temperature, "sensor fault")

    assert window.series(SensorSeries.TEMPERATURE) == [21.5, 21.5]
    assert router.readings[SensorSeries.TEMPERATURE] == "sensor fault"


def test_unparseable_payload_on_empty_window_adds_nothing() -> None:
    router, window, _clock = _router()

    router.route(TOPICS.air_quality, "")
    router.route(TOPICS.air_quality, "nan")
    router.route(TOPICS.air_quality, "1e999")

    assert len(window) == 0


def test_leading_number_is_parsed_like_sensor_cards() -> None:
    router, window, _clock = _router()

    router.route(TOPICS.temperature, " 22.25C")
    router.route(TOPICS.air_quality, "412")

    assert window.latest(SensorSeries.TEMPERATURE) == 22.25
    assert window.latest(SensorSeries.AIR_QUALITY) == 412.0


def test_auxiliary_topics_overwrite_verbatim() -> None:
    router, window, _clock = _router()

    router.route(TOPICS.display, "Hello ESP32")
    router.route(TOPICS.email_summary, "3 unread")
    router.route(TOPICS.led, "#ff0000")

    assert router.auxiliary.display_message == "Hello ESP32"
    assert router.auxiliary.email_summary == "3 unread"
    assert router.auxiliary.led_indicator == "#ff0000"
    assert len(window) == 0


def test_empty_auxiliary_payload_clears_slot() -> None:
    router, _window, _clock = _router()
    router.route(TOPICS.display, "Hello")

    router.route(TOPICS.display, "")

    assert router.auxiliary.display_message == ""


def test_unknown_topic_ignored() -> None:
    router, window, _clock = _router()

    router.route("some/other/topic", "42")

    assert len(window) == 0
    assert router.readings == {series: NO_READING for series in SensorSeries}


def test_snapshot_exposes_series_and_statistics() -> None:
    router, _window, clock = _router()
    router.route(TOPICS.temperature, "21.0")
    clock.tick(1)
    router.route(TOPICS.temperature, "23.0")
    router.route(TOPICS.display, "hi")

    snapshot = router.snapshot(connection_state="connected_stable", stable=True)

    assert snapshot.labels == ["10:00:00", "10:00:01"]
    assert snapshot.series[SensorSeries.TEMPERATURE] == [21.0, 23.0]
    assert snapshot.series[SensorSeries.HUMIDITY] == [None, None]
    assert snapshot.maxima[SensorSeries.TEMPERATURE] == 23.0
    assert snapshot.maxima[SensorSeries.HUMIDITY] is None
    assert snapshot.readings[SensorSeries.TEMPERATURE] == "23.0"
    assert snapshot.auxiliary.display_message == "hi"
    assert snapshot.data_points == 2
    assert snapshot.stable is True

    router.route(TOPICS.display, "later")
    assert snapshot.auxiliary.display_message == "hi"


def test_fractional_air_quality_keeps_its_decimals() -> None:
    router, window, _clock = _router()

    router.route(TOPICS.air_quality, "412.7")

    assert window.latest(SensorSeries.AIR_QUALITY) == 412.7
