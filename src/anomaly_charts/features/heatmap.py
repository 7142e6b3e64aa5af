from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Iterable, Iterator, Sequence

import numpy as np
import pandas as pd

from anomaly_charts.features.entities import (
    HEATMAP_CELL_ENTITY_DELIMITER,
    category_field_entity_label,
    entity_list_key,
    entity_list_label,
)
from anomaly_charts.features.summary import round_for_anomaly
from anomaly_charts.preprocess.time import (
    DEFAULT_TIMEZONE,
    HEATMAP_X_AXIS_DATE_FORMAT,
    format_epoch_millis,
    partition_time_windows,
)
from anomaly_charts.types import (
    AnomalyPoint,
    Entity,
    EntityAnomalySummaries,
    EntityList,
    HeatmapSortType,
    TimeWindow,
)

NUM_CELLS = 20
DISPLAY_TOP_NUM = 10

# (upper bound, colour) bands; 0 gets its own grey so empty cells stand apart
ANOMALY_HEATMAP_COLORSCALE: tuple[tuple[float, str], ...] = (
    (0.0, "#F2F2F2"),
    (0.2, "#F7E0B8"),
    (0.4, "#F2C596"),
    (0.6, "#ECA976"),
    (0.8, "#E78D5B"),
    (1.0, "#E8664C"),
)

HOVER_TEMPLATE = (
    "<b>Entities</b>: %{y}<br>"
    "<b>Time</b>: %{x}<br>"
    "<b>Max anomaly grade</b>: %{z}<br>"
    "<b>Anomaly occurrences</b>: %{text}"
    "<extra></extra>"
)


def heatmap_color_for_value(value: float) -> str:
    if value <= 0:
        return ANOMALY_HEATMAP_COLORSCALE[0][1]
    for upper, color in ANOMALY_HEATMAP_COLORSCALE[1:]:
        if value < upper:
            return color
    return ANOMALY_HEATMAP_COLORSCALE[-1][1]


def plotly_colorscale() -> list[list[Any]]:
    """Expand the bands into the stepped ``[position, colour]`` pairs plotly expects."""
    lower = 1e-7
    empty_color = ANOMALY_HEATMAP_COLORSCALE[0][1]
    scale: list[list[Any]] = [[0.0, empty_color], [lower, empty_color]]
    for upper, color in ANOMALY_HEATMAP_COLORSCALE[1:]:
        scale.append([lower, color])
        scale.append([upper, color])
        lower = upper
    return scale


@dataclass(frozen=True)
class HeatmapRow:
    label: str
    entity_list: EntityList
    max_severity: tuple[float, ...]
    occurrences: tuple[int, ...]

    @property
    def peak_severity(self) -> float:
        return max(self.max_severity, default=0.0)

    @property
    def total_occurrences(self) -> int:
        return int(sum(self.occurrences))

    def score(self, sort_type: HeatmapSortType) -> float:
        if HeatmapSortType(sort_type) == HeatmapSortType.SEVERITY:
            return self.peak_severity
        return float(self.total_occurrences)


@dataclass(frozen=True)
class HeatmapCell:
    row_index: int
    column_index: int
    label: str
    entity_list: EntityList
    window: TimeWindow
    max_severity: float
    occurrence: int


@dataclass(frozen=True)
class HeatmapMatrix:
    """Entity rows by time-window columns; ``rows[0]`` is the top-ranked row."""

    rows: tuple[HeatmapRow, ...]
    windows: tuple[TimeWindow, ...]
    is_placeholder: bool = False

    @property
    def cell_time_interval(self) -> int:
        if not self.windows:
            return 0
        return self.windows[0].duration

    @property
    def labels(self) -> list[str]:
        return [row.label for row in self.rows]

    def column_labels(
        self,
        fmt: str = HEATMAP_X_AXIS_DATE_FORMAT,
        timezone: str = DEFAULT_TIMEZONE,
    ) -> list[str]:
        return [format_epoch_millis(window.start_date, fmt, timezone) for window in self.windows]

    def cells(self) -> Iterator[HeatmapCell]:
        for row_index, row in enumerate(self.rows):
            for column_index, window in enumerate(self.windows):
                yield HeatmapCell(
                    row_index=row_index,
                    column_index=column_index,
                    label=row.label,
                    entity_list=row.entity_list,
                    window=window,
                    max_severity=row.max_severity[column_index],
                    occurrence=row.occurrences[column_index],
                )

    def to_frame(self) -> pd.DataFrame:
        columns = [
            "row_rank",
            "label",
            "entity",
            "column",
            "window_start",
            "window_end",
            "max_severity",
            "occurrence",
        ]
        records = [
            {
                "row_rank": cell.row_index + 1,
                "label": cell.label,
                "entity": category_field_entity_label(
                    cell.entity_list, HEATMAP_CELL_ENTITY_DELIMITER
                ),
                "column": cell.column_index,
                "window_start": cell.window.start_date,
                "window_end": cell.window.end_date,
                "max_severity": cell.max_severity,
                "occurrence": cell.occurrence,
            }
            for cell in self.cells()
        ]
        return pd.DataFrame.from_records(records, columns=columns)

    def to_plot_payload(
        self,
        timezone: str = DEFAULT_TIMEZONE,
        fmt: str = HEATMAP_X_AXIS_DATE_FORMAT,
    ) -> dict[str, Any]:
        """Plotly heatmap trace; plotly draws the first row at the bottom, so rows are reversed."""
        bottom_up = list(reversed(self.rows))
        columns = len(self.windows)
        return {
            "type": "heatmap",
            "x": self.column_labels(fmt, timezone),
            "y": [row.label for row in bottom_up],
            "z": [list(row.max_severity) for row in bottom_up],
            "text": [list(row.occurrences) for row in bottom_up],
            "customdata": [
                [category_field_entity_label(row.entity_list, HEATMAP_CELL_ENTITY_DELIMITER)]
                * columns
                for row in bottom_up
            ],
            "colorscale": plotly_colorscale(),
            "zmin": 0,
            "zmax": 1,
            "showscale": False,
            "xgap": 2,
            "ygap": 2,
            "opacity": 1,
            "hovertemplate": HOVER_TEMPLATE,
            "cell_time_interval": self.cell_time_interval,
        }


def _partition(date_range: TimeWindow, num_cells: int) -> list[TimeWindow]:
    windows = partition_time_windows(num_cells, date_range)
    if not windows:
        raise ValueError("heatmap date range must not be empty")
    return windows


def _column_index(starts: np.ndarray, windows: Sequence[TimeWindow], timestamp: int) -> int | None:
    # half-open columns, except the last one which keeps the range end
    index = int(np.searchsorted(starts, timestamp, side="right")) - 1
    if index < 0:
        return None
    window = windows[index]
    if timestamp < window.end_date:
        return index
    if index == len(windows) - 1 and timestamp == window.end_date:
        return index
    return None


def _require_grade_in_range(grade: float, entity_list: EntityList, timestamp: int) -> float:
    if not 0.0 <= grade <= 1.0:
        raise ValueError(
            f"anomaly grade {grade} for entity '{entity_list_label(entity_list, ', ')}' "
            f"at {timestamp} is outside [0, 1]"
        )
    return grade


def _placeholder_rows(count: int, columns: int) -> list[HeatmapRow]:
    rows = []
    for length in range(count):
        # distinct widths keep the rows from collapsing into one label
        blank = " " * length
        rows.append(
            HeatmapRow(
                label=blank,
                entity_list=(Entity(name=None, value=blank),),
                max_severity=(0.0,) * columns,
                occurrences=(0,) * columns,
            )
        )
    return rows


def sort_heatmap_rows(
    matrix: HeatmapMatrix,
    sort_type: HeatmapSortType,
    top_num: int,
) -> HeatmapMatrix:
    """Rank rows by peak severity or total occurrences, descending, keeping ``top_num``.

    Equal scores keep their input order.
    """
    if top_num < 0:
        raise ValueError(f"top_num must be >= 0, got {top_num}")
    sort_key = HeatmapSortType(sort_type)
    ranked = sorted(matrix.rows, key=lambda row: -row.score(sort_key))
    return replace(matrix, rows=tuple(ranked[:top_num]))


def build_from_raw_anomalies(
    anomalies: Iterable[AnomalyPoint] | None,
    date_range: TimeWindow,
    num_cells: int = NUM_CELLS,
    sort_type: HeatmapSortType = HeatmapSortType.SEVERITY,
    display_top_num: int = DISPLAY_TOP_NUM,
) -> HeatmapMatrix:
    """Aggregate per-entity anomaly results into severity/occurrence cells.

    Points without an entity are ignored and entities that never scored a
    positive grade are dropped. When nothing remains the matrix is filled with
    ``display_top_num`` blank placeholder rows.
    """
    windows = _partition(date_range, num_cells)
    starts = np.array([window.start_date for window in windows], dtype=np.int64)
    columns = len(windows)

    grouped: dict[tuple[tuple[str | None, str], ...], list[AnomalyPoint]] = {}
    for point in anomalies or []:
        if not point.entity:
            continue
        grouped.setdefault(entity_list_key(point.entity), []).append(point)

    rows: list[HeatmapRow] = []
    for points in grouped.values():
        if not any((point.anomaly_grade or 0.0) > 0 for point in points):
            continue
        severities = [0.0] * columns
        occurrences = [0] * columns
        for point in points:
            index = _column_index(starts, windows, point.plot_time)
            if index is None:
                continue
            grade = _require_grade_in_range(
                float(point.anomaly_grade or 0.0), point.entity, point.plot_time
            )
            severities[index] = max(severities[index], grade)
            if grade > 0:
                occurrences[index] += 1
        rows.append(
            HeatmapRow(
                label=entity_list_label(points[0].entity),
                entity_list=tuple(points[0].entity),
                max_severity=tuple(severities),
                occurrences=tuple(occurrences),
            )
        )

    is_placeholder = not rows
    if is_placeholder:
        rows = _placeholder_rows(display_top_num, columns)

    matrix = HeatmapMatrix(rows=tuple(rows), windows=tuple(windows), is_placeholder=is_placeholder)
    return sort_heatmap_rows(matrix, sort_type, display_top_num)


def build_from_precomputed_summaries(
    summaries: Sequence[EntityAnomalySummaries] | None,
    date_range: TimeWindow,
    num_cells: int = NUM_CELLS,
    sort_type: HeatmapSortType | None = None,
    display_top_num: int | None = None,
) -> HeatmapMatrix:
    """Build cells from per-bucket summaries already ranked by the backend.

    Rows keep the input order unless ``sort_type`` is given, and are cut to
    ``display_top_num`` when it is given. Placeholders default to
    ``DISPLAY_TOP_NUM`` rows.
    """
    windows = _partition(date_range, num_cells)
    starts = np.array([window.start_date for window in windows], dtype=np.int64)
    columns = len(windows)

    rows: list[HeatmapRow] = []
    for entity_summaries in summaries or []:
        severities: list[float | None] = [None] * columns
        occurrences = [0] * columns
        for summary in entity_summaries.anomaly_summaries:
            index = _column_index(starts, windows, summary.start_time)
            if index is None:
                continue
            raw_grade = _require_grade_in_range(
                float(summary.max_anomaly or 0.0),
                entity_summaries.entity_list,
                summary.start_time,
            )
            grade = round_for_anomaly(raw_grade)
            current = severities[index]
            severities[index] = grade if current is None else max(current, grade)
            occurrences[index] += int(summary.anomaly_count or 0)
        rows.append(
            HeatmapRow(
                label=entity_list_label(entity_summaries.entity_list),
                entity_list=tuple(entity_summaries.entity_list),
                max_severity=tuple(0.0 if value is None else value for value in severities),
                occurrences=tuple(occurrences),
            )
        )

    is_placeholder = not rows
    if is_placeholder:
        rows = _placeholder_rows(
            DISPLAY_TOP_NUM if display_top_num is None else display_top_num, columns
        )

    matrix = HeatmapMatrix(rows=tuple(rows), windows=tuple(windows), is_placeholder=is_placeholder)
    if sort_type is not None:
        top_num = len(matrix.rows) if display_top_num is None else display_top_num
        return sort_heatmap_rows(matrix, sort_type, top_num)
    if display_top_num is not None:
        if display_top_num < 0:
            raise ValueError(f"top_num must be >= 0, got {display_top_num}")
        return replace(matrix, rows=matrix.rows[:display_top_num])
    return matrix


def filter_heatmap_rows(
    matrix: HeatmapMatrix,
    selected_labels: Sequence[str],
    sort_type: HeatmapSortType,
) -> HeatmapMatrix:
    selected = set(selected_labels)
    kept = tuple(row for row in matrix.rows if row.label in selected)
    return sort_heatmap_rows(replace(matrix, rows=kept), sort_type, len(selected_labels))


def selected_cell_matrix(matrix: HeatmapMatrix, row: int, column: int) -> dict[str, Any]:
    """Overlay trace that highlights one cell, ``row`` counted from the top."""
    if not 0 <= row < len(matrix.rows):
        raise ValueError(f"row {row} outside heatmap with {len(matrix.rows)} rows")
    if not 0 <= column < len(matrix.windows):
        raise ValueError(f"column {column} outside heatmap with {len(matrix.windows)} columns")

    payload = matrix.to_plot_payload()
    value = matrix.rows[row].max_severity[column]
    # payload rows run bottom-up
    payload_row = len(matrix.rows) - 1 - row
    payload["z"] = [
        [value if (i == payload_row and j == column) else None for j in range(len(matrix.windows))]
        for i in range(len(matrix.rows))
    ]
    color = heatmap_color_for_value(value)
    payload["colorscale"] = [[0, color], [1, color]]
    payload["hoverinfo"] = "skip"
    payload["hovertemplate"] = None
    payload["selected_window"] = matrix.windows[column]
    return payload
