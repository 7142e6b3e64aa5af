from __future__ import annotations

from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.colors import BoundaryNorm, ListedColormap

from anomaly_charts.features.heatmap import ANOMALY_HEATMAP_COLORSCALE, HeatmapMatrix
from anomaly_charts.preprocess.time import DEFAULT_TIMEZONE, HEATMAP_X_AXIS_DATE_FORMAT
from anomaly_charts.viz.common import save_figure

MAX_Y_LABEL_LENGTH = 40


def _colormap() -> tuple[ListedColormap, BoundaryNorm]:
    colors = [color for _, color in ANOMALY_HEATMAP_COLORSCALE]
    # a sliver above zero keeps empty cells grey and any positive grade coloured
    boundaries = [0.0, 1e-7] + [upper for upper, _ in ANOMALY_HEATMAP_COLORSCALE[1:]]
    cmap = ListedColormap(colors)
    cmap.set_over(colors[-1])
    return cmap, BoundaryNorm(boundaries, cmap.N)


def _short_label(label: str) -> str:
    text = label.replace("<br>", " / ")
    if len(text) <= MAX_Y_LABEL_LENGTH:
        return text
    return text[: MAX_Y_LABEL_LENGTH - 3] + "..."


def plot_anomaly_heatmap(
    matrix: HeatmapMatrix,
    output_path: Path,
    timezone: str = DEFAULT_TIMEZONE,
    title: str = "Anomalies by entity",
    fmt: str = HEATMAP_X_AXIS_DATE_FORMAT,
) -> Path | None:
    if not matrix.rows or not matrix.windows:
        return None

    values = np.array([row.max_severity for row in matrix.rows], dtype=float)
    occurrences = np.array([row.occurrences for row in matrix.rows], dtype=int)
    cmap, norm = _colormap()

    fig_height = max(3.0, min(14.0, 0.45 * len(matrix.rows) + 1.5))
    fig, ax = plt.subplots(figsize=(13, fig_height))
    ax.imshow(values, aspect="auto", cmap=cmap, norm=norm, interpolation="nearest")

    # top-ranked row first, matching the payload read bottom-up
    ax.set_yticks(range(len(matrix.rows)))
    ax.set_yticklabels([_short_label(row.label) for row in matrix.rows], fontsize=8)
    column_labels = matrix.column_labels(fmt, timezone)
    step = max(1, len(column_labels) // 10)
    ax.set_xticks(range(0, len(column_labels), step))
    ax.set_xticklabels(column_labels[::step], rotation=45, ha="right", fontsize=7)

    if not matrix.is_placeholder:
        for (row_index, column_index), count in np.ndenumerate(occurrences):
            if count > 0:
                ax.text(column_index, row_index, str(count), ha="center", va="center", fontsize=6)

    ax.set_title(f"{title} (no anomalies found)" if matrix.is_placeholder else title)
    ax.set_xlabel("Time window start")
    return save_figure(output_path)
