"""Parsers for already-fetched anomaly result aggregation responses.

Responses are plain nested dicts as returned by the search backend, wrapped in
a ``{"response": ...}`` envelope. Missing paths fall back to empty or zero
values instead of raising, so a partially populated response still renders.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Mapping, Sequence

from anomaly_charts.features.entities import contains_entity
from anomaly_charts.features.summary import round_for_anomaly
from anomaly_charts.preprocess.time import (
    DEFAULT_TIMEZONE,
    MINUTE_DATE_FORMAT,
    format_epoch_millis,
)
from anomaly_charts.types import (
    DAY_MS,
    WEEK_MS,
    AnomalyAggregation,
    AnomalyPoint,
    AnomalySummary,
    Entity,
    EntityAnomalySummaries,
    EntityAnomalySummary,
    EntityList,
    FeaturePoint,
)

TOP_ENTITY_AGGS = "top_entity_aggs"
TOP_ENTITIES_FIELD = "top_entities"
TOP_ANOMALY_GRADE_SORT_AGGS = "top_anomaly_grade_sort_aggs"
MAX_ANOMALY_AGGS = "max_anomaly_aggs"
COUNT_ANOMALY_AGGS = "count_anomaly_aggs"
ENTITY_DATE_BUCKET_ANOMALY_AGGS = "entity_date_bucket_anomaly"
AGGREGATED_ANOMALIES = "aggregated_anomalies"
BUCKETIZED_ANOMALY_GRADE = "bucketized_anomaly_grade"
DOC_COUNT_FIELD = "doc_count"
KEY_FIELD = "key"
ENTITY_LIST_FIELD = "entity_list"
MAX_ANOMALY_GRADE_FIELD = "max_anomaly_grade"
ENTITY_FIELD = "entity"

_AGGREGATION_WINDOWS: dict[AnomalyAggregation, tuple[int, str, str]] = {
    AnomalyAggregation.DAILY: (DAY_MS, "", "%m/%d/%y"),
    AnomalyAggregation.WEEKLY: (WEEK_MS, "Week of ", "%m/%d/%y"),
    # months are approximated as 30 days
    AnomalyAggregation.MONTHLY: (30 * DAY_MS, "", "%b %Y"),
}


@dataclass(frozen=True)
class AggregatedAnomaly:
    point: AnomalyPoint
    agg_interval: str


def _get(data: Any, path: str | Sequence[str], default: Any = None) -> Any:
    """Walk ``path`` (dotted string or parts) through dicts and lists."""
    parts = path.split(".") if isinstance(path, str) else list(path)
    current = data
    for part in parts:
        if isinstance(current, Mapping):
            if part not in current:
                return default
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return default
            current = current[index]
        else:
            return default
    return default if current is None else current


def parse_entity_list(raw: Any) -> EntityList:
    if not raw:
        return ()
    if isinstance(raw, Mapping):
        raw = [raw]
    return tuple(
        Entity(name=item.get("name"), value=str(item.get("value", "")))
        for item in raw
        if isinstance(item, Mapping)
    )


def _parse_contributions(source: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    names = {
        feature["feature_id"]: feature["feature_name"]
        for feature in _get(source, "feature_data", [])
        if feature.get("feature_id") and feature.get("feature_name")
    }
    attributions = {
        item["feature_id"]: round_for_anomaly(item["data"])
        for item in _get(source, "relevant_attribution", [])
        if item.get("feature_id") and item.get("data")
    }
    return {
        feature_id: {"name": name, "attribution": attributions.get(feature_id)}
        for feature_id, name in names.items()
    }


def _parse_anomaly_source(source: Mapping[str, Any]) -> AnomalyPoint:
    grade = round_for_anomaly(_get(source, "anomaly_grade", 0.0))
    end_time = int(_get(source, "data_end_time", 0))
    return AnomalyPoint(
        start_time=int(_get(source, "data_start_time", 0)),
        end_time=end_time,
        plot_time=end_time,
        anomaly_grade=grade,
        confidence=round_for_anomaly(_get(source, "confidence", 0.0)),
        entity=parse_entity_list(_get(source, ENTITY_FIELD, [])),
        contributions=_parse_contributions(source),
    )


def parse_pure_anomalies(result: Mapping[str, Any]) -> list[AnomalyPoint]:
    hits = _get(result, "response.hits.hits", [])
    return [_parse_anomaly_source(_get(hit, "_source", {})) for hit in hits]


def parse_bucketized_anomaly_results(
    result: Mapping[str, Any],
) -> tuple[list[AnomalyPoint], dict[str, list[FeaturePoint]]]:
    """Top-graded hit per time bucket plus the per-feature values carried with it."""
    anomalies: list[AnomalyPoint] = []
    feature_data: dict[str, list[FeaturePoint]] = {}
    for bucket in _get(result, f"response.aggregations.{BUCKETIZED_ANOMALY_GRADE}.buckets", []):
        source = _get(bucket, "top_anomaly_hits.hits.hits.0._source")
        if not source or source.get("anomaly_grade") is None:
            continue
        features = _get(source, "feature_data", [])
        if not features:
            continue

        point = _parse_anomaly_source(source)
        if (point.anomaly_grade or 0.0) <= 0:
            point = replace(point, contributions={})
        anomalies.append(point)

        attributions = {
            item["feature_id"]: round_for_anomaly(item["data"])
            for item in _get(source, "relevant_attribution", [])
            if item.get("feature_id") and item.get("data")
        }
        expected = {
            item.get("feature_id"): round_for_anomaly(item.get("data", 0.0))
            for item in _get(source, "expected_values.0.value_list", [])
        }
        for feature in features:
            feature_id = feature.get("feature_id")
            feature_data.setdefault(feature_id, []).append(
                FeaturePoint(
                    start_time=point.start_time,
                    end_time=point.end_time,
                    plot_time=point.plot_time,
                    data=round_for_anomaly(feature.get("data", 0.0)),
                    expected_value=expected.get(feature_id),
                    attribution=attributions.get(feature_id),
                )
            )
    return anomalies, feature_data


def parse_anomaly_summary(
    result: Mapping[str, Any],
    timezone: str = DEFAULT_TIMEZONE,
) -> AnomalySummary:
    aggregations = _get(result, "response.aggregations", {})
    count = int(_get(aggregations, "count_anomalies.value", 0))

    def _value(name: str) -> float:
        if not count:
            return 0.0
        return round_for_anomaly(_get(aggregations, f"{name}.value", 0.0))

    last_occurrence = ""
    if count:
        last_occurrence = format_epoch_millis(
            _get(aggregations, "max_data_end_time.value", 0), MINUTE_DATE_FORMAT, timezone
        )
    return AnomalySummary(
        anomaly_occurrence=count,
        min_anomaly_grade=_value("min_anomaly_grade"),
        max_anomaly_grade=_value("max_anomaly_grade"),
        avg_anomaly_grade=_value("avg_anomaly_grade"),
        min_confidence=_value("min_confidence"),
        max_confidence=_value("max_confidence"),
        last_anomaly_occurrence=last_occurrence,
    )


def parse_entity_anomaly_summary_results(
    result: Mapping[str, Any],
    entity_list: Sequence[Entity],
) -> EntityAnomalySummaries:
    buckets = _get(result, f"response.aggregations.{ENTITY_DATE_BUCKET_ANOMALY_AGGS}.buckets", [])
    summaries = tuple(
        EntityAnomalySummary(
            start_time=int(_get(bucket, KEY_FIELD, 0)),
            max_anomaly=_get(bucket, f"{MAX_ANOMALY_AGGS}.value", 0.0),
            anomaly_count=int(_get(bucket, f"{COUNT_ANOMALY_AGGS}.value", 0)),
        )
        for bucket in buckets
    )
    return EntityAnomalySummaries(entity_list=tuple(entity_list), anomaly_summaries=summaries)


def parse_top_entity_anomaly_summary_results(
    result: Mapping[str, Any],
    is_multi_category: bool,
) -> list[EntityAnomalySummaries]:
    if is_multi_category:
        buckets = _get(result, f"response.aggregations.{TOP_ENTITY_AGGS}.buckets", [])
    else:
        buckets = _get(
            result, f"response.aggregations.{TOP_ENTITIES_FIELD}.{TOP_ENTITY_AGGS}.buckets", []
        )

    parsed: list[EntityAnomalySummaries] = []
    for bucket in buckets:
        if is_multi_category:
            entity_list = parse_entity_list(
                _get(bucket, f"{ENTITY_LIST_FIELD}.hits.hits.0._source.{ENTITY_FIELD}", [])
            )
            max_grade = _get(bucket, MAX_ANOMALY_AGGS, 0.0)
        else:
            entity_list = parse_entity_list(
                _get(bucket, f"{ENTITY_LIST_FIELD}.hits.hits.0._source", {})
            )
            max_grade = _get(bucket, [TOP_ANOMALY_GRADE_SORT_AGGS, MAX_ANOMALY_AGGS], 0.0)
        if isinstance(max_grade, Mapping):
            max_grade = max_grade.get("value", 0.0)
        parsed.append(
            EntityAnomalySummaries(
                entity_list=entity_list,
                anomaly_summaries=(
                    EntityAnomalySummary(
                        start_time=0,
                        max_anomaly=max_grade,
                        anomaly_count=int(_get(bucket, DOC_COUNT_FIELD, 0)),
                    ),
                ),
                model_id=str(_get(bucket, KEY_FIELD, "")) if is_multi_category else None,
            )
        )
    return parsed


def parse_agg_top_entity_anomaly_summary_results(
    result: Mapping[str, Any],
) -> list[EntityAnomalySummaries]:
    """Summaries of top parent entities from a composite aggregation keyed by field."""
    parsed: list[EntityAnomalySummaries] = []
    for bucket in _get(result, "response.buckets", []):
        key = _get(bucket, KEY_FIELD, {})
        entity_list = tuple(Entity(name=name, value=str(value)) for name, value in key.items())
        parsed.append(
            EntityAnomalySummaries(
                entity_list=entity_list,
                anomaly_summaries=(
                    EntityAnomalySummary(
                        start_time=0,
                        max_anomaly=_get(bucket, MAX_ANOMALY_GRADE_FIELD, 0.0),
                        anomaly_count=int(_get(bucket, DOC_COUNT_FIELD, 0)),
                    ),
                ),
            )
        )
    return parsed


def parse_top_child_entity_combos(
    result: Mapping[str, Any],
    parent_entities: Sequence[Entity],
) -> list[EntityList]:
    """Per bucket, the entity combination with the parent entities removed."""
    combos: list[EntityList] = []
    for bucket in _get(result, f"response.aggregations.{TOP_ENTITY_AGGS}.buckets", []):
        entities = parse_entity_list(
            _get(bucket, f"{ENTITY_LIST_FIELD}.hits.hits.0._source.{ENTITY_FIELD}", [])
        )
        combos.append(
            tuple(entity for entity in entities if not contains_entity(entity, parent_entities))
        )
    return combos


def parse_historical_aggregated_anomalies(
    result: Mapping[str, Any],
    aggregation: AnomalyAggregation,
    timezone: str = DEFAULT_TIMEZONE,
) -> list[AggregatedAnomaly]:
    aggregation = AnomalyAggregation(aggregation)
    if aggregation not in _AGGREGATION_WINDOWS:
        raise ValueError(f"unsupported anomaly aggregation: {aggregation.value}")
    end_offset, prefix, date_format = _AGGREGATION_WINDOWS[aggregation]
    plot_offset = end_offset // 2

    anomalies: list[AggregatedAnomaly] = []
    for bucket in _get(result, f"response.aggregations.{AGGREGATED_ANOMALIES}.buckets", []):
        timestamp = int(_get(bucket, KEY_FIELD, 0))
        anomalies.append(
            AggregatedAnomaly(
                point=AnomalyPoint(
                    start_time=timestamp,
                    end_time=timestamp + end_offset,
                    plot_time=timestamp + plot_offset,
                    anomaly_grade=_get(bucket, f"{MAX_ANOMALY_AGGS}.value", 0.0),
                ),
                agg_interval=prefix + format_epoch_millis(timestamp, date_format, timezone),
            )
        )
    return anomalies
