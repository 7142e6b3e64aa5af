from __future__ import annotations

from pathlib import Path

import pandas as pd

from anomaly_charts.types import AnomalyPoint, Entity

REQUIRED_COLUMNS = ["start_time", "end_time", "anomaly_grade"]
ENTITY_COLUMN_PREFIX = "entity."


def _validate_required_columns(df: pd.DataFrame) -> pd.DataFrame:
    for column in REQUIRED_COLUMNS:
        if column not in df.columns:
            raise ValueError(f"Anomaly table missing column: {column}")
    return df


def load_table(path: Path) -> pd.DataFrame:
    if path.suffix == ".parquet":
        return pd.read_parquet(path)
    if path.suffix == ".csv":
        # utf-8-sig strips BOM-prefixed headers commonly found in exported CSV files.
        return pd.read_csv(path, encoding="utf-8-sig")
    raise ValueError(f"Unsupported table file type: {path.suffix}")


def anomaly_points_from_frame(df: pd.DataFrame) -> list[AnomalyPoint]:
    """Convert a flat anomaly table into points.

    Category values live in ``entity.<field>`` columns, one per category field,
    in column order; blank cells are left out of the entity list.
    """
    _validate_required_columns(df)
    entity_columns = [column for column in df.columns if column.startswith(ENTITY_COLUMN_PREFIX)]
    points: list[AnomalyPoint] = []
    for row in df.to_dict(orient="records"):
        entity = tuple(
            Entity(name=column[len(ENTITY_COLUMN_PREFIX) :], value=str(row[column]))
            for column in entity_columns
            if not pd.isna(row[column]) and str(row[column]) != ""
        )
        grade = row["anomaly_grade"]
        confidence = row.get("confidence")
        end_time = int(row["end_time"])
        plot_time = row.get("plot_time")
        points.append(
            AnomalyPoint(
                start_time=int(row["start_time"]),
                end_time=end_time,
                plot_time=end_time if plot_time is None or pd.isna(plot_time) else int(plot_time),
                anomaly_grade=None if pd.isna(grade) else float(grade),
                confidence=None if confidence is None or pd.isna(confidence) else float(confidence),
                entity=entity,
            )
        )
    return points


def load_anomaly_table(path: Path) -> list[AnomalyPoint]:
    return anomaly_points_from_frame(load_table(path))
