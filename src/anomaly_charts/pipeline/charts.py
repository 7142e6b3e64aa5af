from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import pandas as pd

from anomaly_charts.config import AppConfig
from anomaly_charts.features.downsample import (
    generate_anomaly_annotations,
    prepare_series_for_chart,
)
from anomaly_charts.features.entities import entity_list_label
from anomaly_charts.features.heatmap import (
    HeatmapMatrix,
    build_from_precomputed_summaries,
    build_from_raw_anomalies,
)
from anomaly_charts.features.missing_data import (
    feature_missing_annotations,
    feature_missing_points_for_detector,
    feature_missing_severities,
    highest_missing_severity,
    missing_data_message,
)
from anomaly_charts.features.summary import disabled_history_annotations, get_anomaly_summary
from anomaly_charts.io.result_sets import ResultBundle
from anomaly_charts.io.write import records_frame, write_summary, write_table
from anomaly_charts.paths import build_output_paths
from anomaly_charts.types import AnomalyPoint
from anomaly_charts.viz.heatmaps import plot_anomaly_heatmap
from anomaly_charts.viz.time_series import (
    plot_anomaly_grades,
    plot_series_with_missing_annotations,
)

LOGGER = logging.getLogger(__name__)

ANOMALY_SERIES_COLUMNS = [
    "start_time",
    "end_time",
    "plot_time",
    "anomaly_grade",
    "confidence",
    "entity",
]
FLAG_COLUMNS = ["feature_name", "plot_time", "start_time", "end_time", "is_missing"]
ANNOTATION_COLUMNS = [
    "feature_name",
    "data_value",
    "start_time",
    "end_time",
    "details",
    "header",
]


def _anomaly_series_frame(points: list[AnomalyPoint]) -> pd.DataFrame:
    return pd.DataFrame.from_records(
        [
            {
                "start_time": point.start_time,
                "end_time": point.end_time,
                "plot_time": point.plot_time,
                "anomaly_grade": point.anomaly_grade,
                "confidence": point.confidence,
                "entity": entity_list_label(point.entity, ", "),
            }
            for point in points
        ],
        columns=ANOMALY_SERIES_COLUMNS,
    )


def _per_feature_frame(records_by_feature: dict[str, list], columns: list[str]) -> pd.DataFrame:
    frames = []
    for name, records in records_by_feature.items():
        frame = records_frame(records, columns=columns[1:])
        frame.insert(0, "feature_name", name)
        frames.append(frame)
    if not frames:
        return pd.DataFrame(columns=columns)
    return pd.concat(frames, ignore_index=True)


def _feature_names(bundle: ResultBundle) -> list[str]:
    if bundle.detector.feature_names:
        return list(bundle.detector.feature_names)
    return sorted(bundle.feature_data)


def _write_tables(artifacts: dict[str, pd.DataFrame], out_dir: Path, config: AppConfig) -> None:
    paths = build_output_paths(out_dir)
    for name, table in artifacts.items():
        write_table(table, paths.table_path(name), fmt=config.outputs.tables_format)


def _render_chart_figures(
    bundle: ResultBundle,
    anomalies: list[AnomalyPoint],
    annotations_by_feature: dict[str, list],
    out_dir: Path,
    config: AppConfig,
) -> None:
    paths = build_output_paths(out_dir)
    fmt = config.outputs.figures_format
    try:
        plot_anomaly_grades(
            anomalies,
            paths.figure_path("anomaly_grades", fmt),
            timezone=config.time.timezone,
        )
        for feature_name, annotations in annotations_by_feature.items():
            plot_series_with_missing_annotations(
                list(bundle.feature_data.get(feature_name, ())),
                annotations,
                paths.figure_path(f"feature_{feature_name}", fmt),
                feature_name=feature_name,
                timezone=config.time.timezone,
            )
    except Exception:  # pragma: no cover
        LOGGER.exception("Failed rendering one or more chart figures")


def build_chart_artifacts(
    bundle: ResultBundle,
    out_dir: Path,
    config: AppConfig,
) -> dict[str, pd.DataFrame]:
    """Downsample the anomaly series and annotate missing feature data for one detector."""
    display_range = bundle.display_range or bundle.date_range
    timezone = config.time.timezone

    [anomalies] = prepare_series_for_chart(
        [bundle.anomalies], display_range, config.chart.max_data_points
    )
    [anomaly_annotations] = generate_anomaly_annotations([anomalies], timezone)
    LOGGER.info(
        "Prepared %d of %d anomaly points (%d annotated)",
        len(anomalies),
        len(bundle.anomalies),
        len(anomaly_annotations),
    )

    feature_names = _feature_names(bundle)
    offset = config.missing_data.check_window_offset
    flags_by_feature = feature_missing_points_for_detector(
        bundle.detector,
        bundle.feature_data,
        bundle.date_range,
        window_delay_applied=bundle.window_delay_applied,
        feature_names=feature_names,
        offset=offset,
    )
    annotations_by_feature = {
        name: feature_missing_annotations(
            bundle.feature_data.get(name, ()),
            bundle.detector.interval_minutes,
            bundle.detector.window_delay,
            bundle.date_range,
            display_range,
            window_delay_applied=bundle.window_delay_applied,
            max_annotations=config.chart.max_feature_annotations,
            offset=offset,
            timezone=timezone,
        )
        for name in feature_names
    }

    artifacts: dict[str, pd.DataFrame] = {
        "anomaly_series": _anomaly_series_frame(anomalies),
        "feature_missing_flags": _per_feature_frame(flags_by_feature, FLAG_COLUMNS),
        "feature_missing_annotations": _per_feature_frame(
            annotations_by_feature, ANNOTATION_COLUMNS
        ),
    }
    _write_tables(artifacts, out_dir, config)

    severities = feature_missing_severities(
        flags_by_feature,
        yellow_min_missing=config.missing_data.yellow_min_missing,
        red_min_missing=config.missing_data.red_min_missing,
    )
    highest = highest_missing_severity(severities)
    message = missing_data_message(highest, severities.get(highest, []))
    if message["message"]:
        LOGGER.warning(message["message"])

    summary: dict[str, Any] = {
        "anomaly_summary": get_anomaly_summary(bundle.anomalies, timezone),
        "anomaly_annotations": len(anomaly_annotations),
        "points_in_range": len(anomalies),
        "missing_data": {
            "severity": highest.name,
            "features_by_severity": {
                severity.name: features for severity, features in severities.items()
            },
            "message": message["message"],
            "action_item": message["action_item"],
            "annotations": {name: len(items) for name, items in annotations_by_feature.items()},
        },
        "disabled_history": disabled_history_annotations(
            display_range, bundle.detector, timezone
        ),
    }
    write_summary(summary, build_output_paths(out_dir).summary_path("chart_summary"))

    if config.outputs.render_figures:
        _render_chart_figures(bundle, anomalies, annotations_by_feature, out_dir, config)
    return artifacts


def build_heatmap_matrix(bundle: ResultBundle, config: AppConfig) -> HeatmapMatrix:
    """Precomputed per-entity summaries win over raw anomalies when the bundle has both."""
    heatmap = config.heatmap
    display_range = bundle.display_range or bundle.date_range
    if bundle.entity_summaries:
        return build_from_precomputed_summaries(
            bundle.entity_summaries,
            display_range,
            num_cells=heatmap.num_cells,
            sort_type=heatmap.sort_type,
            display_top_num=heatmap.display_top_num,
        )
    return build_from_raw_anomalies(
        bundle.anomalies,
        display_range,
        num_cells=heatmap.num_cells,
        sort_type=heatmap.sort_type,
        display_top_num=heatmap.display_top_num,
    )


def build_heatmap_artifacts(
    bundle: ResultBundle,
    out_dir: Path,
    config: AppConfig,
) -> HeatmapMatrix:
    paths = build_output_paths(out_dir)
    matrix = build_heatmap_matrix(bundle, config)
    LOGGER.info(
        "Built heatmap with %d rows x %d cells (placeholder=%s)",
        len(matrix.rows),
        len(matrix.windows),
        matrix.is_placeholder,
    )

    _write_tables({"heatmap_cells": matrix.to_frame()}, out_dir, config)
    write_summary(
        matrix.to_plot_payload(
            timezone=config.time.timezone, fmt=config.time.heatmap_date_format
        ),
        paths.summary_path("heatmap_payload"),
    )

    if config.outputs.render_figures:
        try:
            plot_anomaly_heatmap(
                matrix,
                paths.figure_path("anomaly_heatmap", config.outputs.figures_format),
                timezone=config.time.timezone,
                fmt=config.time.heatmap_date_format,
            )
        except Exception:  # pragma: no cover
            LOGGER.exception("Failed rendering anomaly heatmap")
    return matrix
