from __future__ import annotations

import math
from typing import Any, Callable, Sequence, TypeVar

import numpy as np

from anomaly_charts.features.summary import round_for_anomaly
from anomaly_charts.preprocess.time import (
    DATE_FORMAT,
    DEFAULT_TIMEZONE,
    filter_with_date_range,
    format_epoch_millis,
)
from anomaly_charts.types import ONE_MINUTE_MS, AnomalyPoint, TimeWindow

T = TypeVar("T")

MAX_DATA_POINTS = 1000


def _point_severity(point: Any) -> float | None:
    if isinstance(point, dict):
        return point.get("anomaly_grade")
    return getattr(point, "severity", None)


def sample_max_severity(
    series: Sequence[T],
    max_points: int = MAX_DATA_POINTS,
    severity: Callable[[T], float | None] = _point_severity,
) -> list[T]:
    """Reduce ``series`` to at most ``max_points`` elements, keeping each chunk's peak.

    The series is cut into contiguous chunks of ``ceil(n / max_points)`` elements
    and the most severe element of every chunk survives (first one on ties).
    Elements without a severity rank below any numeric value, so a chunk with no
    severities keeps its first element.
    """
    if max_points <= 0:
        raise ValueError(f"max_points must be >= 1, got {max_points}")
    items = list(series)
    total = len(items)
    if total <= max_points:
        return items

    step = math.ceil(total / max_points)
    chunks = math.ceil(total / step)
    scores = np.full(chunks * step, -np.inf, dtype=float)
    for index, item in enumerate(items):
        value = severity(item)
        if value is not None and not math.isnan(value):
            scores[index] = float(value)

    matrix = scores.reshape(chunks, step)
    winners = matrix.argmax(axis=1) + np.arange(chunks) * step
    # padded tail cells never win: a real element always precedes them in its row
    return [items[int(index)] for index in winners]


def prepare_series_for_chart(
    series_list: Sequence[Sequence[T]],
    date_range: TimeWindow,
    max_points: int = MAX_DATA_POINTS,
    time_field: str = "plot_time",
) -> list[list[T]]:
    prepared: list[list[T]] = []
    for series in series_list:
        in_range = filter_with_date_range(series, date_range, time_field)
        prepared.append(sample_max_severity(in_range, max_points))
    return prepared


def generate_anomaly_annotations(
    series_list: Sequence[Sequence[AnomalyPoint]],
    timezone: str = DEFAULT_TIMEZONE,
) -> list[list[dict[str, Any]]]:
    """One hover annotation per point with a positive anomaly grade."""
    annotations: list[list[dict[str, Any]]] = []
    for series in series_list:
        series_annotations = []
        for point in series:
            grade = point.anomaly_grade or 0.0
            if grade <= 0:
                continue
            start = format_epoch_millis(point.start_time, DATE_FORMAT, timezone)
            end = format_epoch_millis(point.end_time, DATE_FORMAT, timezone)
            confidence = round_for_anomaly(point.confidence or 0.0)
            series_annotations.append(
                {
                    "data_value": point.plot_time,
                    "x0": point.start_time,
                    "x1": point.end_time,
                    "anomaly_grade": round_for_anomaly(grade),
                    "details": (
                        f"There is an anomaly with confidence {confidence} "
                        f"between {start} and {end}"
                    ),
                    "entity": point.entity,
                }
            )
        annotations.append(series_annotations)
    return annotations


def live_chart_placeholders(
    data: Sequence[Any],
    date_range: TimeWindow,
    interval_minutes: int,
) -> list[dict[str, Any]]:
    """Empty-grade ticks walking back from the range end, used to draw the live chart frame.

    Ticks are newest first and the range start closes the list.
    """
    if not data:
        return []
    if interval_minutes <= 0:
        raise ValueError(f"interval_minutes must be >= 1, got {interval_minutes}")
    interval_ms = interval_minutes * ONE_MINUTE_MS
    ticks = list(range(date_range.end_date, date_range.start_date, -interval_ms))
    ticks.append(date_range.start_date)
    return [
        {
            "anomaly_grade": None,
            "confidence": None,
            "start_time": tick,
            "end_time": tick,
            "plot_time": tick,
        }
        for tick in ticks
    ]
