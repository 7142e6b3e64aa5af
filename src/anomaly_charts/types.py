from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

SECOND_MS = 1000
ONE_MINUTE_MS = 60 * SECOND_MS
HOUR_MS = 60 * ONE_MINUTE_MS
DAY_MS = 24 * HOUR_MS
WEEK_MS = 7 * DAY_MS

UNIT_MILLISECONDS = {
    "seconds": SECOND_MS,
    "minutes": ONE_MINUTE_MS,
    "hours": HOUR_MS,
    "days": DAY_MS,
    "weeks": WEEK_MS,
}


class HeatmapSortType(str, Enum):
    SEVERITY = "severity"
    OCCURRENCE = "occurrence"


class MissingSeverity(str, Enum):
    # no user attention needed
    GREEN = "0"
    # needs user attention
    YELLOW = "1"
    # needs user attention and action
    RED = "2"


class AnomalyAggregation(str, Enum):
    RAW = "raw"
    DAILY = "day"
    WEEKLY = "week"
    MONTHLY = "month"


@dataclass(frozen=True)
class TimeWindow:
    """Half-open ``[start_date, end_date)`` interval in epoch milliseconds."""

    start_date: int
    end_date: int

    def __post_init__(self) -> None:
        if self.end_date < self.start_date:
            raise ValueError(
                f"time window end ({self.end_date}) precedes its start ({self.start_date})"
            )

    @property
    def duration(self) -> int:
        return self.end_date - self.start_date

    def contains(self, timestamp: int) -> bool:
        return self.start_date <= timestamp < self.end_date


@dataclass(frozen=True)
class Entity:
    name: str | None
    value: str


EntityList = tuple[Entity, ...]


@dataclass(frozen=True)
class AnomalyPoint:
    start_time: int
    end_time: int
    plot_time: int
    anomaly_grade: float | None
    confidence: float | None = None
    entity: EntityList = ()
    contributions: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def timestamp(self) -> int:
        return self.plot_time

    @property
    def severity(self) -> float | None:
        return self.anomaly_grade


@dataclass(frozen=True)
class FeaturePoint:
    start_time: int
    end_time: int
    plot_time: int
    data: float | None
    expected_value: float | None = None
    attribution: float | None = None

    @property
    def timestamp(self) -> int:
        return self.plot_time

    @property
    def severity(self) -> float | None:
        return None


@dataclass(frozen=True)
class WindowDelay:
    interval: int = 0
    unit: str = "minutes"

    def __post_init__(self) -> None:
        if self.unit.lower() not in UNIT_MILLISECONDS:
            allowed = ", ".join(sorted(UNIT_MILLISECONDS))
            raise ValueError(f"unsupported window delay unit '{self.unit}' (expected {allowed})")
        if self.interval < 0:
            raise ValueError("window delay interval must be >= 0")

    def to_milliseconds(self) -> int:
        return int(self.interval) * UNIT_MILLISECONDS[self.unit.lower()]


@dataclass(frozen=True)
class MissingFlag:
    plot_time: int
    start_time: int
    end_time: int
    is_missing: bool


@dataclass(frozen=True)
class MissingAnnotation:
    data_value: int
    start_time: int
    end_time: int
    details: str
    header: str


@dataclass(frozen=True)
class EntityAnomalySummary:
    start_time: int
    max_anomaly: float | None
    anomaly_count: int | None


@dataclass(frozen=True)
class EntityAnomalySummaries:
    entity_list: EntityList
    anomaly_summaries: tuple[EntityAnomalySummary, ...] = ()
    model_id: str | None = None


@dataclass(frozen=True)
class DetectorMeta:
    interval_minutes: int
    window_delay: WindowDelay = field(default_factory=WindowDelay)
    enabled: bool = False
    enabled_time: int | None = None
    disabled_time: int | None = None
    category_fields: tuple[str, ...] = ()
    feature_names: tuple[str, ...] = ()

    @property
    def is_high_cardinality(self) -> bool:
        return len(self.category_fields) > 0


@dataclass(frozen=True)
class AnomalySummary:
    anomaly_occurrence: int
    min_anomaly_grade: float
    max_anomaly_grade: float
    avg_anomaly_grade: float
    min_confidence: float
    max_confidence: float
    last_anomaly_occurrence: str
