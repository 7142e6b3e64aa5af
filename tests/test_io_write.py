from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from anomaly_charts.io.write import records_frame, write_summary, write_table
from anomaly_charts.paths import build_output_paths
from anomaly_charts.types import HeatmapSortType, MissingFlag


def test_build_output_paths_creates_layout(tmp_path: Path) -> None:
    paths = build_output_paths(tmp_path / "out")

    assert paths.tables.is_dir()
    assert paths.figures.is_dir()
    assert paths.summary.is_dir()
    assert paths.figure_path("feature_cpu/total", "svg").name == "feature_cpu_total.svg"
    assert paths.summary_path("chart_summary") == paths.summary / "chart_summary.json"


def test_records_frame_from_dataclasses() -> None:
    flags = [
        MissingFlag(plot_time=60_000, start_time=0, end_time=60_000, is_missing=True),
        MissingFlag(plot_time=120_000, start_time=60_000, end_time=120_000, is_missing=False),
    ]

    frame = records_frame(flags, columns=["plot_time", "is_missing"])

    assert list(frame.columns) == ["plot_time", "is_missing"]
    assert frame["is_missing"].tolist() == [True, False]


def test_write_table_applies_format_suffix(tmp_path: Path) -> None:
    frame = pd.DataFrame({"a": [1, 2]})

    csv_path = write_table(frame, tmp_path / "tables" / "values", fmt="csv")
    parquet_path = write_table(frame, tmp_path / "tables" / "values", fmt="parquet")

    assert csv_path.name == "values.csv"
    assert pd.read_parquet(parquet_path)["a"].tolist() == [1, 2]
    with pytest.raises(ValueError, match="Unsupported table format"):
        write_table(frame, tmp_path / "values", fmt="xlsx")


def test_write_summary_serializes_domain_values(tmp_path: Path) -> None:
    path = write_summary(
        {
            "sort": HeatmapSortType.OCCURRENCE,
            "flag": MissingFlag(plot_time=1, start_time=0, end_time=1, is_missing=True),
            "count": np.int64(3),
            "fields": {"b", "a"},
        },
        tmp_path / "summary" / "payload.json",
    )

    payload = json.loads(path.read_text(encoding="utf-8"))

    assert payload["sort"] == "occurrence"
    assert payload["flag"]["is_missing"] is True
    assert payload["count"] == 3
    assert payload["fields"] == ["a", "b"]
