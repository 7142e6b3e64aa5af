from __future__ import annotations

from pathlib import Path
from typing import Sequence

import matplotlib.pyplot as plt

from anomaly_charts.preprocess.time import DEFAULT_TIMEZONE
from anomaly_charts.types import AnomalyPoint, FeaturePoint, MissingAnnotation
from anomaly_charts.viz.common import save_figure, to_datetimes


def plot_series_with_missing_annotations(
    points: Sequence[FeaturePoint],
    annotations: Sequence[MissingAnnotation],
    output_path: Path,
    feature_name: str = "feature",
    timezone: str = DEFAULT_TIMEZONE,
) -> Path | None:
    """Feature values over time with shaded spans where data points are missing."""
    if not points and not annotations:
        return None

    fig, ax = plt.subplots(figsize=(14, 4))
    if points:
        ordered = sorted(points, key=lambda point: point.plot_time)
        ax.plot(
            to_datetimes([point.plot_time for point in ordered], timezone),
            [point.data for point in ordered],
            linewidth=1.2,
            marker="o",
            markersize=2,
            label=feature_name,
        )

    for index, annotation in enumerate(annotations):
        start, end = to_datetimes([annotation.start_time, annotation.end_time], timezone)
        ax.axvspan(
            start,
            end,
            color="#E8664C",
            alpha=0.15,
            label="missing data" if index == 0 else None,
        )

    ax.set_title(f"{feature_name}: feature data")
    ax.set_xlabel("Time")
    ax.set_ylabel("Value")
    ax.legend(loc="upper left")
    fig.autofmt_xdate()
    return save_figure(output_path)


def plot_anomaly_grades(
    points: Sequence[AnomalyPoint],
    output_path: Path,
    timezone: str = DEFAULT_TIMEZONE,
) -> Path | None:
    graded = [point for point in points if point.anomaly_grade is not None]
    if not graded:
        return None
    ordered = sorted(graded, key=lambda point: point.plot_time)
    fig, ax = plt.subplots(figsize=(14, 3))
    ax.plot(
        to_datetimes([point.plot_time for point in ordered], timezone),
        [point.anomaly_grade for point in ordered],
        linewidth=1.0,
        color="#E8664C",
    )
    ax.set_ylim(0, 1.05)
    ax.set_title("Anomaly grade")
    ax.set_xlabel("Time")
    ax.set_ylabel("Grade")
    fig.autofmt_xdate()
    return save_figure(output_path)
