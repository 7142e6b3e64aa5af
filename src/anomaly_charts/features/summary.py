from __future__ import annotations

from typing import Any, Iterable

from anomaly_charts.preprocess.time import (
    DATE_FORMAT,
    DEFAULT_TIMEZONE,
    MINUTE_DATE_FORMAT,
    format_epoch_millis,
)
from anomaly_charts.types import AnomalyPoint, AnomalySummary, DetectorMeta, TimeWindow

SHOW_DECIMAL_NUMBER_THRESHOLD = 0.01

DEFAULT_ANOMALY_SUMMARY = AnomalySummary(
    anomaly_occurrence=0,
    min_anomaly_grade=0.0,
    max_anomaly_grade=0.0,
    avg_anomaly_grade=0.0,
    min_confidence=0.0,
    max_confidence=0.0,
    last_anomaly_occurrence="-",
)


def round_for_anomaly(num: float) -> float:
    """Two decimals for values >= 0.01, three significant digits in scientific form below."""
    value = float(num)
    if value >= SHOW_DECIMAL_NUMBER_THRESHOLD:
        return round(value, 2)
    return float(f"{value:.2e}")


def get_anomaly_summary(
    anomalies: Iterable[AnomalyPoint] | None,
    timezone: str = DEFAULT_TIMEZONE,
) -> AnomalySummary:
    points = list(anomalies or [])
    if not points:
        return DEFAULT_ANOMALY_SUMMARY

    positive = [point for point in points if (point.anomaly_grade or 0.0) > 0.0]
    grades = [float(point.anomaly_grade or 0.0) for point in positive]
    confidences = [float(point.confidence or 0.0) for point in positive]

    max_grade = max(grades + [0.0])
    min_grade = min(grades + [1.0])
    max_confidence = max(confidences + [0.0])
    min_confidence = min(confidences + [1.0])
    avg_grade = round_for_anomaly(sum(grades) / len(grades)) if grades else 0.0

    last_occurrence = "-"
    if positive:
        latest = positive[0]
        for point in positive[1:]:
            if point.start_time >= latest.start_time:
                latest = point
        last_occurrence = format_epoch_millis(latest.end_time, MINUTE_DATE_FORMAT, timezone)

    return AnomalySummary(
        anomaly_occurrence=len(positive),
        # no positive grades leaves min above max; report zero instead
        min_anomaly_grade=0.0 if min_grade > max_grade else min_grade,
        max_anomaly_grade=max_grade,
        avg_anomaly_grade=avg_grade,
        min_confidence=0.0 if min_confidence > max_confidence else min_confidence,
        max_confidence=max_confidence,
        last_anomaly_occurrence=last_occurrence,
    )


def disabled_history_annotations(
    date_range: TimeWindow,
    detector: DetectorMeta | None,
    timezone: str = DEFAULT_TIMEZONE,
) -> list[dict[str, Any]]:
    """Shade the span during which the detector was stopped inside the plotted range."""
    if (
        detector is None
        or not detector.disabled_time
        or detector.disabled_time > date_range.end_date
        or not detector.enabled_time
        or detector.enabled_time < date_range.start_date
    ):
        return []

    start_time = detector.disabled_time
    end_time = detector.enabled_time if detector.enabled else date_range.end_date
    if detector.enabled:
        details = (
            f"Detector was stopped from {format_epoch_millis(start_time, DATE_FORMAT, timezone)}"
            f" to {format_epoch_millis(detector.enabled_time, DATE_FORMAT, timezone)}"
        )
    else:
        details = (
            f"Detector was stopped from {format_epoch_millis(start_time, DATE_FORMAT, timezone)}"
            " until now"
        )
    return [
        {
            "x0": max(start_time, date_range.start_date),
            "x1": end_time,
            "details": details,
        }
    ]
