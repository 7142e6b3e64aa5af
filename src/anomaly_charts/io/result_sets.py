from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from anomaly_charts.io.read import load_anomaly_table
from anomaly_charts.io.responses import parse_entity_list
from anomaly_charts.types import (
    UNIT_MILLISECONDS,
    AnomalyPoint,
    DetectorMeta,
    EntityAnomalySummaries,
    EntityAnomalySummary,
    FeaturePoint,
    TimeWindow,
    WindowDelay,
)

_CAMEL_BOUNDARY_RE = re.compile(r"(?<!^)(?=[A-Z])")
_VERBATIM_KEY_PARENTS = frozenset({"feature_data", "contributions"})


@dataclass(frozen=True)
class ResultBundle:
    """Everything one chart render needs, as exported from a detector results page."""

    detector: DetectorMeta
    date_range: TimeWindow
    anomalies: tuple[AnomalyPoint, ...] = ()
    feature_data: dict[str, tuple[FeaturePoint, ...]] = field(default_factory=dict)
    entity_summaries: tuple[EntityAnomalySummaries, ...] = ()
    display_range: TimeWindow | None = None
    window_delay_applied: bool = False
    source_path: str | None = None


def _snake(key: Any) -> Any:
    if not isinstance(key, str):
        return key
    return _CAMEL_BOUNDARY_RE.sub("_", key).lower()


def snake_case_keys(value: Any, *, keep_keys: bool = False) -> Any:
    """Recursively rewrite camelCase mapping keys to snake_case.

    Keys directly under ``feature_data`` and ``contributions`` are feature names
    or ids and are left alone.
    """
    if isinstance(value, Mapping):
        converted = {}
        for key, item in value.items():
            new_key = key if keep_keys else _snake(key)
            converted[new_key] = snake_case_keys(item, keep_keys=new_key in _VERBATIM_KEY_PARENTS)
        return converted
    if isinstance(value, list):
        return [snake_case_keys(item) for item in value]
    return value


def _require_mapping(value: Any, *, field_name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ValueError(f"result bundle field '{field_name}' must be a mapping")
    return value


def _require_int(value: Any, *, field_name: str) -> int:
    if isinstance(value, bool) or value is None:
        raise ValueError(f"result bundle field '{field_name}' must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"result bundle field '{field_name}' must be an integer") from exc


def _optional_int(value: Any, *, field_name: str) -> int | None:
    if value is None:
        return None
    return _require_int(value, field_name=field_name)


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    return float(value)


def _parse_range(payload: Any, *, field_name: str) -> TimeWindow:
    raw = _require_mapping(payload, field_name=field_name)
    return TimeWindow(
        start_date=_require_int(raw.get("start_date"), field_name=f"{field_name}.start_date"),
        end_date=_require_int(raw.get("end_date"), field_name=f"{field_name}.end_date"),
    )


def _parse_period(payload: Any, *, field_name: str) -> WindowDelay:
    if payload is None:
        return WindowDelay()
    raw = _require_mapping(payload, field_name=field_name)
    # backend schedules nest the values under "period"
    raw = raw.get("period", raw)
    return WindowDelay(
        interval=_require_int(raw.get("interval", 0), field_name=f"{field_name}.interval"),
        unit=str(raw.get("unit", "minutes")),
    )


def _parse_detector(payload: Any) -> DetectorMeta:
    raw = _require_mapping(payload, field_name="detector")
    if raw.get("interval_minutes") is not None:
        interval_minutes = _require_int(
            raw["interval_minutes"], field_name="detector.interval_minutes"
        )
    else:
        interval = _parse_period(
            raw.get("detection_interval"), field_name="detector.detection_interval"
        )
        interval_minutes = interval.to_milliseconds() // UNIT_MILLISECONDS["minutes"]
    if interval_minutes <= 0:
        raise ValueError("result bundle field 'detector.interval_minutes' must be >= 1")

    feature_names = raw.get("feature_names")
    if feature_names is None:
        feature_names = [
            feature.get("feature_name")
            for feature in raw.get("feature_attributes") or []
            if feature.get("feature_name")
        ]
    return DetectorMeta(
        interval_minutes=interval_minutes,
        window_delay=_parse_period(raw.get("window_delay"), field_name="detector.window_delay"),
        enabled=bool(raw.get("enabled", False)),
        enabled_time=_optional_int(raw.get("enabled_time"), field_name="detector.enabled_time"),
        disabled_time=_optional_int(raw.get("disabled_time"), field_name="detector.disabled_time"),
        category_fields=tuple(raw.get("category_field") or raw.get("category_fields") or ()),
        feature_names=tuple(feature_names),
    )


def _parse_anomaly(raw: Mapping[str, Any], *, index: int) -> AnomalyPoint:
    field_name = f"anomalies[{index}]"
    end_time = _require_int(raw.get("end_time"), field_name=f"{field_name}.end_time")
    return AnomalyPoint(
        start_time=_require_int(raw.get("start_time"), field_name=f"{field_name}.start_time"),
        end_time=end_time,
        plot_time=_require_int(
            raw.get("plot_time", end_time), field_name=f"{field_name}.plot_time"
        ),
        anomaly_grade=_optional_float(raw.get("anomaly_grade")),
        confidence=_optional_float(raw.get("confidence")),
        entity=parse_entity_list(raw.get("entity")),
        contributions=dict(raw.get("contributions") or {}),
    )


def _parse_feature_point(raw: Mapping[str, Any], *, field_name: str) -> FeaturePoint:
    end_time = _require_int(raw.get("end_time"), field_name=f"{field_name}.end_time")
    return FeaturePoint(
        start_time=_require_int(raw.get("start_time"), field_name=f"{field_name}.start_time"),
        end_time=end_time,
        plot_time=_require_int(
            raw.get("plot_time", end_time), field_name=f"{field_name}.plot_time"
        ),
        data=_optional_float(raw.get("data")),
        expected_value=_optional_float(raw.get("expected_value")),
        attribution=_optional_float(raw.get("attribution")),
    )


def _parse_entity_summaries(raw: Mapping[str, Any], *, index: int) -> EntityAnomalySummaries:
    summaries = tuple(
        EntityAnomalySummary(
            start_time=_require_int(
                item.get("start_time"),
                field_name=f"entity_summaries[{index}].anomaly_summaries.start_time",
            ),
            max_anomaly=_optional_float(item.get("max_anomaly")),
            anomaly_count=_optional_int(
                item.get("anomaly_count"),
                field_name=f"entity_summaries[{index}].anomaly_summaries.anomaly_count",
            ),
        )
        for item in raw.get("anomaly_summaries") or []
    )
    return EntityAnomalySummaries(
        entity_list=parse_entity_list(raw.get("entity_list")),
        anomaly_summaries=summaries,
        model_id=raw.get("model_id"),
    )


def _load_anomalies_table(value: Any, source_path: Path | None) -> list[AnomalyPoint]:
    table_path = Path(str(value))
    if not table_path.is_absolute() and source_path is not None:
        table_path = source_path.parent / table_path
    if not table_path.exists():
        raise ValueError(f"result bundle field 'anomalies_table' not found: {table_path}")
    return load_anomaly_table(table_path)


def parse_result_bundle(
    payload: Mapping[str, Any],
    *,
    source_path: Path | None = None,
) -> ResultBundle:
    """Build a bundle from a decoded payload.

    ``anomalies_table`` may name a CSV or parquet anomaly table, relative to the
    bundle file; its rows follow any inline ``anomalies``.
    """
    data = snake_case_keys(_require_mapping(payload, field_name="<root>"))

    feature_data = {
        str(name): tuple(
            _parse_feature_point(point, field_name=f"feature_data.{name}[{index}]")
            for index, point in enumerate(points or [])
        )
        for name, points in (data.get("feature_data") or {}).items()
    }
    anomalies = [
        _parse_anomaly(item, index=index)
        for index, item in enumerate(data.get("anomalies") or [])
    ]
    if data.get("anomalies_table"):
        anomalies.extend(_load_anomalies_table(data["anomalies_table"], source_path))

    display_range = data.get("display_range")
    return ResultBundle(
        detector=_parse_detector(data.get("detector")),
        date_range=_parse_range(data.get("date_range"), field_name="date_range"),
        anomalies=tuple(anomalies),
        feature_data=feature_data,
        entity_summaries=tuple(
            _parse_entity_summaries(item, index=index)
            for index, item in enumerate(data.get("entity_summaries") or [])
        ),
        display_range=(
            _parse_range(display_range, field_name="display_range") if display_range else None
        ),
        window_delay_applied=bool(data.get("window_delay_applied", False)),
        source_path=str(source_path) if source_path is not None else None,
    )


def load_result_bundle(path: Path) -> ResultBundle:
    """Read a JSON or YAML result bundle (JSON parses as YAML)."""
    if not path.exists():
        raise ValueError(f"result bundle not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        payload = yaml.safe_load(handle) or {}
    return parse_result_bundle(payload, source_path=path)
