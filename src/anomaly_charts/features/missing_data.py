from __future__ import annotations

from typing import Iterable, Mapping, Sequence

import numpy as np

from anomaly_charts.preprocess.time import (
    DATE_FORMAT,
    DEFAULT_TIMEZONE,
    MINUTE_DATE_FORMAT,
    format_epoch_millis,
    partition_time_windows,
    round_array_to_minute,
    round_to_minute,
    window_delay_milliseconds,
)
from anomaly_charts.types import (
    ONE_MINUTE_MS,
    DetectorMeta,
    FeaturePoint,
    MissingAnnotation,
    MissingFlag,
    MissingSeverity,
    TimeWindow,
    WindowDelay,
)

# the most recent intervals may not be delivered yet, so they are never checked
FEATURE_DATA_CHECK_WINDOW_OFFSET = 2
MAX_FEATURE_ANNOTATIONS = 100
YELLOW_MIN_MISSING = 2
RED_MIN_MISSING = 3

NO_TRAINING_DATA_ACTION_ITEM = (
    "Make sure your data is ingested correctly. If your data source has infrequent "
    "ingestion, increase the detector time interval and try again."
)
FEATURE_DETAILS_HINT = " See the feature data shown below for more details."


def detect_missing_points(
    observed: Iterable[FeaturePoint],
    interval_minutes: int,
    date_range: TimeWindow,
    window_delay: WindowDelay | None = None,
    window_delay_applied: bool = False,
    offset: int = FEATURE_DATA_CHECK_WINDOW_OFFSET,
) -> list[MissingFlag]:
    """Flag every detector interval in ``date_range`` that has no observed data point.

    Ticks start at the range start rounded to the minute and stop ``offset``
    intervals (plus the window delay, unless the caller already shifted the
    range) before the range end. A tick is present when an observed start time,
    rounded to the minute, falls inside ``[tick, tick + interval)``.
    """
    if interval_minutes <= 0:
        raise ValueError(f"interval_minutes must be >= 1, got {interval_minutes}")
    points = list(observed)
    if not points:
        return []

    existing = np.sort(round_array_to_minute(np.array([point.start_time for point in points])))
    interval_ms = interval_minutes * ONE_MINUTE_MS
    delay_ms = window_delay_milliseconds(window_delay, window_delay_applied)
    first_tick = round_to_minute(date_range.start_date)
    stop = round_to_minute(date_range.end_date - offset * interval_ms - delay_ms)
    if first_tick >= stop:
        return []

    ticks = np.arange(first_tick, stop, interval_ms, dtype=np.int64)
    # first observed time >= tick; the tick is present when that time is < tick + interval
    positions = np.searchsorted(existing, ticks, side="left")
    candidates = existing[np.minimum(positions, len(existing) - 1)]
    present = (positions < len(existing)) & (candidates < ticks + interval_ms)

    return [
        MissingFlag(
            plot_time=int(tick) + interval_ms,
            start_time=int(tick),
            end_time=int(tick) + interval_ms,
            is_missing=not bool(is_present),
        )
        for tick, is_present in zip(ticks, present)
    ]


def sample_missing_annotations(
    flags: Sequence[MissingFlag],
    date_range: TimeWindow,
    max_annotations: int = MAX_FEATURE_ANNOTATIONS,
    timezone: str = DEFAULT_TIMEZONE,
) -> list[MissingAnnotation]:
    """Keep at most one missing-data annotation per ``date_range / max_annotations`` window.

    Each window reports its middle missing flag, stretched to cover the whole
    window, so the returned span can be wider than the gap itself.
    """
    windows = partition_time_windows(max_annotations, date_range)
    if not windows:
        return []
    width = windows[0].duration
    buckets: list[list[MissingFlag]] = [[] for _ in windows]
    for flag in flags:
        if not flag.is_missing:
            continue
        if not date_range.start_date <= flag.plot_time < windows[-1].end_date:
            continue
        buckets[(flag.plot_time - date_range.start_date) // width].append(flag)

    annotations: list[MissingAnnotation] = []
    for window, bucket in zip(windows, buckets):
        if not bucket:
            continue
        sampled = bucket[len(bucket) // 2]
        start_time = min(window.start_date, sampled.start_time)
        end_time = max(window.end_date, sampled.end_time)
        annotations.append(
            MissingAnnotation(
                data_value=sampled.plot_time,
                start_time=start_time,
                end_time=end_time,
                details=(
                    "There is feature data point missing between "
                    f"{format_epoch_millis(start_time, MINUTE_DATE_FORMAT, timezone)} and "
                    f"{format_epoch_millis(end_time, MINUTE_DATE_FORMAT, timezone)}"
                ),
                header=format_epoch_millis(sampled.plot_time, DATE_FORMAT, timezone),
            )
        )
    return annotations


def feature_missing_annotations(
    feature_data: Iterable[FeaturePoint],
    interval_minutes: int,
    window_delay: WindowDelay | None,
    query_range: TimeWindow,
    display_range: TimeWindow | None = None,
    window_delay_applied: bool = False,
    max_annotations: int = MAX_FEATURE_ANNOTATIONS,
    offset: int = FEATURE_DATA_CHECK_WINDOW_OFFSET,
    timezone: str = DEFAULT_TIMEZONE,
) -> list[MissingAnnotation]:
    """Detect gaps over ``query_range`` and sample them against the displayed range."""
    flags = detect_missing_points(
        feature_data,
        interval_minutes,
        query_range,
        window_delay=window_delay,
        window_delay_applied=window_delay_applied,
        offset=offset,
    )
    missing = [flag for flag in flags if flag.is_missing]
    return sample_missing_annotations(
        missing,
        display_range or query_range,
        max_annotations=max_annotations,
        timezone=timezone,
    )


def feature_missing_points_for_detector(
    detector: DetectorMeta,
    features_data: Mapping[str, Sequence[FeaturePoint]],
    date_range: TimeWindow,
    window_delay_applied: bool = False,
    feature_names: Sequence[str] | None = None,
    offset: int = FEATURE_DATA_CHECK_WINDOW_OFFSET,
) -> dict[str, list[MissingFlag]]:
    names = list(feature_names if feature_names is not None else detector.feature_names)
    return {
        name: detect_missing_points(
            features_data.get(name, []),
            detector.interval_minutes,
            date_range,
            window_delay=detector.window_delay,
            window_delay_applied=window_delay_applied,
            offset=offset,
        )
        for name in names
    }


def feature_missing_severities(
    points_by_feature: Mapping[str, Sequence[MissingFlag]],
    yellow_min_missing: int = YELLOW_MIN_MISSING,
    red_min_missing: int = RED_MIN_MISSING,
) -> dict[MissingSeverity, list[str]]:
    """Group features by how many of their most recent intervals are missing.

    Classification stops at the first feature with fewer than two flags; the
    features classified before it are kept.
    """
    if not 0 < yellow_min_missing <= red_min_missing:
        raise ValueError("expected 0 < yellow_min_missing <= red_min_missing")
    severities: dict[MissingSeverity, list[str]] = {}
    for feature_name, flags in points_by_feature.items():
        if len(flags) <= 1:
            return severities
        latest_first = sorted(flags, key=lambda flag: flag.plot_time, reverse=True)
        streak = 0
        for flag in latest_first[:red_min_missing]:
            if not flag.is_missing:
                break
            streak += 1

        if streak >= red_min_missing:
            severity = MissingSeverity.RED
        elif streak >= yellow_min_missing:
            severity = MissingSeverity.YELLOW
        else:
            continue
        severities.setdefault(severity, []).append(feature_name)
    return severities


def highest_missing_severity(
    severities: Mapping[MissingSeverity, Sequence[str]],
) -> MissingSeverity:
    populated = [severity for severity, features in severities.items() if features]
    if not populated:
        return MissingSeverity.GREEN
    return max(populated, key=lambda severity: int(severity.value))


def missing_data_message(
    severity: MissingSeverity | None,
    features: Sequence[str],
    hide_feature_message: bool = False,
) -> dict[str, str]:
    plural = "s" if len(features) > 1 else ""
    joined = ", ".join(features)
    hint = "" if hide_feature_message else FEATURE_DETAILS_HINT
    if severity == MissingSeverity.YELLOW:
        return {
            "message": (
                f"Recent data is missing for feature{plural}: {joined}. "
                "So, anomaly result is missing during this time."
            ),
            "action_item": "Make sure your data is ingested correctly." + hint,
        }
    if severity == MissingSeverity.RED:
        return {
            "message": (
                f"Data is not being ingested correctly for feature{plural}: {joined}. "
                "So, anomaly result is missing during this time."
            ),
            "action_item": NO_TRAINING_DATA_ACTION_ITEM + hint,
        }
    return {"message": "", "action_item": ""}
