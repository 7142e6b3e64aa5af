from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from anomaly_charts.config import TIMEZONE_ENV_VAR, load_config
from anomaly_charts.types import HeatmapSortType


def _write_config(tmp_path: Path, data: dict) -> Path:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return config_path


def test_load_config_defaults_for_empty_file(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.delenv(TIMEZONE_ENV_VAR, raising=False)
    config_path = tmp_path / "config.yaml"
    config_path.write_text("", encoding="utf-8")

    cfg = load_config(config_path)

    assert cfg.time.timezone == "UTC"
    assert cfg.chart.max_data_points == 1000
    assert cfg.chart.max_feature_annotations == 100
    assert cfg.missing_data.check_window_offset == 2
    assert cfg.heatmap.num_cells == 20
    assert cfg.heatmap.display_top_num == 10
    assert cfg.heatmap.sort_type == HeatmapSortType.SEVERITY
    assert cfg.entities.max_time_series_to_display == 5
    assert cfg.outputs.tables_format == "parquet"


def test_load_config_reads_sections(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.delenv(TIMEZONE_ENV_VAR, raising=False)
    config_path = _write_config(
        tmp_path,
        {
            "time": {"timezone": "America/Los_Angeles"},
            "heatmap": {"num_cells": 8, "sort_type": "occurrence"},
            "outputs": {"tables_format": "csv", "render_figures": False},
        },
    )

    cfg = load_config(config_path)

    assert cfg.time.timezone == "America/Los_Angeles"
    assert cfg.heatmap.num_cells == 8
    assert cfg.heatmap.sort_type == HeatmapSortType.OCCURRENCE
    assert cfg.outputs.tables_format == "csv"
    assert cfg.outputs.render_figures is False


def test_load_config_uses_env_timezone(monkeypatch, tmp_path: Path) -> None:
    config_path = _write_config(tmp_path, {"time": {"timezone": "UTC"}})
    monkeypatch.setenv(TIMEZONE_ENV_VAR, "Europe/Berlin")

    cfg = load_config(config_path)

    assert cfg.time.timezone == "Europe/Berlin"


def test_load_config_rejects_unknown_sections(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path, {"detectors": {"enabled": True}})

    with pytest.raises(ValueError):
        load_config(config_path)


def test_load_config_rejects_inverted_missing_thresholds(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path, {"missing_data": {"yellow_min_missing": 3, "red_min_missing": 2}}
    )

    with pytest.raises(ValueError, match="red_min_missing"):
        load_config(config_path)


def test_default_config_file_loads(monkeypatch) -> None:
    monkeypatch.delenv(TIMEZONE_ENV_VAR, raising=False)
    config_path = Path(__file__).resolve().parents[1] / "configs" / "default.yaml"

    cfg = load_config(config_path)

    assert cfg.heatmap.num_cells == 20
    assert cfg.missing_data.red_min_missing == 3
