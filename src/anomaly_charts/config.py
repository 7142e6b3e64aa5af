from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field

from anomaly_charts.types import HeatmapSortType

TIMEZONE_ENV_VAR = "ANOMALY_CHARTS_TIMEZONE"


class TimeConfig(BaseModel):
    timezone: str = "UTC"
    heatmap_date_format: str = "%m-%d %H:%M:%S %Y"


class ChartConfig(BaseModel):
    max_data_points: int = Field(default=1000, ge=1)
    max_feature_annotations: int = Field(default=100, ge=1)


class MissingDataConfig(BaseModel):
    check_window_offset: int = Field(default=2, ge=0)
    yellow_min_missing: int = Field(default=2, ge=1)
    red_min_missing: int = Field(default=3, ge=1)


class HeatmapConfig(BaseModel):
    num_cells: int = Field(default=20, ge=1)
    display_top_num: int = Field(default=10, ge=1)
    sort_type: HeatmapSortType = HeatmapSortType.SEVERITY


class EntitiesConfig(BaseModel):
    max_time_series_to_display: int = Field(default=5, ge=1)
    top_child_entities_to_fetch: int = Field(default=20, ge=1)


class OutputsConfig(BaseModel):
    tables_format: Literal["parquet", "csv"] = "parquet"
    figures_format: str = "png"
    render_figures: bool = True


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    time: TimeConfig = Field(default_factory=TimeConfig)
    chart: ChartConfig = Field(default_factory=ChartConfig)
    missing_data: MissingDataConfig = Field(default_factory=MissingDataConfig)
    heatmap: HeatmapConfig = Field(default_factory=HeatmapConfig)
    entities: EntitiesConfig = Field(default_factory=EntitiesConfig)
    outputs: OutputsConfig = Field(default_factory=OutputsConfig)


DEFAULT_CONFIG_PATH = Path("configs/default.yaml")


def load_config(path: Path) -> AppConfig:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    config = AppConfig.model_validate(data)
    if config.missing_data.red_min_missing < config.missing_data.yellow_min_missing:
        raise ValueError("missing_data.red_min_missing must be >= missing_data.yellow_min_missing")
    config.time.timezone = os.getenv(TIMEZONE_ENV_VAR) or config.time.timezone
    return config
