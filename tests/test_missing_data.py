from __future__ import annotations

import pytest

from anomaly_charts.features.missing_data import (
    NO_TRAINING_DATA_ACTION_ITEM,
    detect_missing_points,
    feature_missing_annotations,
    feature_missing_points_for_detector,
    feature_missing_severities,
    highest_missing_severity,
    missing_data_message,
    sample_missing_annotations,
)
from anomaly_charts.types import (
    ONE_MINUTE_MS,
    DetectorMeta,
    FeaturePoint,
    MissingFlag,
    MissingSeverity,
    TimeWindow,
    WindowDelay,
)


def _feature_point(start_ms: int, interval_ms: int = ONE_MINUTE_MS) -> FeaturePoint:
    return FeaturePoint(
        start_time=start_ms,
        end_time=start_ms + interval_ms,
        plot_time=start_ms + interval_ms,
        data=1.0,
    )


def _flag(plot_minute: int, is_missing: bool = True) -> MissingFlag:
    plot_time = plot_minute * ONE_MINUTE_MS
    return MissingFlag(
        plot_time=plot_time,
        start_time=plot_time - ONE_MINUTE_MS,
        end_time=plot_time,
        is_missing=is_missing,
    )


def test_detect_missing_flags_every_tick_but_the_observed_one() -> None:
    # observed start is a few seconds off and rounds onto the 10 minute mark
    observed = [_feature_point(10 * ONE_MINUTE_MS + 12_000, 5 * ONE_MINUTE_MS)]

    flags = detect_missing_points(
        observed,
        interval_minutes=5,
        date_range=TimeWindow(start_date=0, end_date=30 * ONE_MINUTE_MS),
    )

    assert [flag.start_time // ONE_MINUTE_MS for flag in flags] == [0, 5, 10, 15]
    assert [flag.is_missing for flag in flags] == [True, True, False, True]
    assert all(flag.end_time - flag.start_time == 5 * ONE_MINUTE_MS for flag in flags)
    assert all(flag.plot_time == flag.end_time for flag in flags)


def test_detect_missing_ticks_are_minute_aligned() -> None:
    flags = detect_missing_points(
        [_feature_point(0)],
        interval_minutes=1,
        date_range=TimeWindow(start_date=40_000, end_date=10 * ONE_MINUTE_MS),
    )

    assert flags[0].start_time == ONE_MINUTE_MS
    assert all(flag.start_time % ONE_MINUTE_MS == 0 for flag in flags)


def test_detect_missing_honours_window_delay() -> None:
    observed = [_feature_point(minute * ONE_MINUTE_MS) for minute in range(10)]
    date_range = TimeWindow(start_date=0, end_date=10 * ONE_MINUTE_MS)
    delay = WindowDelay(interval=2, unit="minutes")

    delayed = detect_missing_points(observed, 1, date_range, window_delay=delay)
    applied = detect_missing_points(
        observed, 1, date_range, window_delay=delay, window_delay_applied=True
    )

    assert len(delayed) == 6
    assert len(applied) == 8
    assert not any(flag.is_missing for flag in delayed + applied)


def test_detect_missing_empty_input_and_bad_interval() -> None:
    date_range = TimeWindow(start_date=0, end_date=30 * ONE_MINUTE_MS)

    assert detect_missing_points([], 5, date_range) == []
    with pytest.raises(ValueError, match="interval_minutes"):
        detect_missing_points([_feature_point(0)], 0, date_range)


def test_sample_missing_annotations_respects_limit_and_picks_middle() -> None:
    flags = [_flag(minute) for minute in range(1, 100)]
    date_range = TimeWindow(start_date=0, end_date=100 * ONE_MINUTE_MS)

    annotations = sample_missing_annotations(flags, date_range, max_annotations=10)

    assert len(annotations) == 10
    # first window [0, 10) holds plot minutes 1..9; the middle one is minute 5
    assert annotations[0].data_value == 5 * ONE_MINUTE_MS
    assert annotations[1].data_value == 15 * ONE_MINUTE_MS


def test_sample_missing_annotations_widen_to_window_and_skip_empty_windows() -> None:
    flags = [_flag(10), _flag(35, is_missing=False)]
    date_range = TimeWindow(start_date=0, end_date=40 * ONE_MINUTE_MS)

    [annotation] = sample_missing_annotations(flags, date_range, max_annotations=4, timezone="UTC")

    assert annotation.start_time == 9 * ONE_MINUTE_MS
    assert annotation.end_time == 20 * ONE_MINUTE_MS
    assert annotation.details == (
        "There is feature data point missing between 01/01/70 12:09 AM and 01/01/70 12:20 AM"
    )
    assert annotation.header == "01/01/70 12:10:00 AM"


def test_feature_missing_annotations_samples_over_display_range() -> None:
    observed = [_feature_point(minute * ONE_MINUTE_MS) for minute in range(0, 60, 2)]

    annotations = feature_missing_annotations(
        observed,
        interval_minutes=1,
        window_delay=None,
        query_range=TimeWindow(start_date=0, end_date=60 * ONE_MINUTE_MS),
        display_range=TimeWindow(start_date=30 * ONE_MINUTE_MS, end_date=60 * ONE_MINUTE_MS),
        max_annotations=3,
    )

    assert 0 < len(annotations) <= 3
    assert all(annotation.data_value >= 30 * ONE_MINUTE_MS for annotation in annotations)


def test_feature_missing_severities_classify_latest_streak() -> None:
    flags = {
        "red": [_flag(1, False), _flag(2), _flag(3), _flag(4)],
        "yellow": [_flag(4), _flag(3), _flag(2, False), _flag(1)],
        "healthy": [_flag(1), _flag(2), _flag(3), _flag(4, False)],
    }

    severities = feature_missing_severities(flags)

    assert severities == {MissingSeverity.RED: ["red"], MissingSeverity.YELLOW: ["yellow"]}
    assert highest_missing_severity(severities) == MissingSeverity.RED
    assert highest_missing_severity({}) == MissingSeverity.GREEN


def test_feature_missing_severities_stop_at_feature_with_too_few_flags() -> None:
    flags = {"a": [_flag(1), _flag(2), _flag(3)], "b": [_flag(1)], "c": [_flag(1), _flag(2)]}

    assert feature_missing_severities(flags) == {MissingSeverity.RED: ["a"]}
    assert feature_missing_severities({"b": [_flag(1)], "a": [_flag(1), _flag(2)]}) == {}
    assert feature_missing_severities({"a": [_flag(1), _flag(2)]}) == {
        MissingSeverity.YELLOW: ["a"]
    }


def test_feature_missing_points_for_detector_uses_detector_interval() -> None:
    detector = DetectorMeta(interval_minutes=5, feature_names=("cpu", "memory"))
    date_range = TimeWindow(start_date=0, end_date=30 * ONE_MINUTE_MS)

    points = feature_missing_points_for_detector(
        detector,
        {"cpu": [_feature_point(0, 5 * ONE_MINUTE_MS)]},
        date_range,
    )

    assert set(points) == {"cpu", "memory"}
    assert len(points["cpu"]) == 4
    assert points["memory"] == []


def test_missing_data_message_wording() -> None:
    yellow = missing_data_message(MissingSeverity.YELLOW, ["cpu", "memory"])
    red = missing_data_message(MissingSeverity.RED, ["cpu"], hide_feature_message=True)

    assert yellow["message"] == (
        "Recent data is missing for features: cpu, memory. "
        "So, anomaly result is missing during this time."
    )
    assert yellow["action_item"].endswith("See the feature data shown below for more details.")
    assert red["message"].startswith("Data is not being ingested correctly for feature: cpu.")
    assert red["action_item"] == NO_TRAINING_DATA_ACTION_ITEM
    assert missing_data_message(MissingSeverity.GREEN, []) == {"message": "", "action_item": ""}
