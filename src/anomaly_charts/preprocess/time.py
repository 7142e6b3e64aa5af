from __future__ import annotations

import math
from typing import Any, Iterable, TypeVar

import numpy as np
import pandas as pd

from anomaly_charts.types import ONE_MINUTE_MS, TimeWindow, WindowDelay

T = TypeVar("T")

DEFAULT_TIMEZONE = "UTC"
DATE_FORMAT = "%m/%d/%y %I:%M:%S %p"
MINUTE_DATE_FORMAT = "%m/%d/%y %I:%M %p"
HEATMAP_X_AXIS_DATE_FORMAT = "%m-%d %H:%M:%S %Y"

_HALF_MINUTE_MS = ONE_MINUTE_MS // 2


def round_to_minute(timestamp: int) -> int:
    """Round an epoch-millisecond timestamp to the nearest whole minute (halves round up)."""
    return ((int(timestamp) + _HALF_MINUTE_MS) // ONE_MINUTE_MS) * ONE_MINUTE_MS


def round_array_to_minute(timestamps: np.ndarray) -> np.ndarray:
    values = np.asarray(timestamps, dtype=np.int64)
    return ((values + _HALF_MINUTE_MS) // ONE_MINUTE_MS) * ONE_MINUTE_MS


def partition_time_windows(max_windows: int, date_range: TimeWindow) -> list[TimeWindow]:
    """Split ``date_range`` into at most ``max_windows`` contiguous windows.

    Windows are at least one minute wide; the last one is cut at the range end
    and may be narrower than the others. A zero-length range yields no windows.
    """
    if max_windows <= 0:
        raise ValueError(f"max_windows must be >= 1, got {max_windows}")
    range_ms = date_range.end_date - date_range.start_date
    width = max(math.ceil(range_ms / max_windows), ONE_MINUTE_MS)

    windows: list[TimeWindow] = []
    current = date_range.start_date
    while current < date_range.end_date:
        windows.append(
            TimeWindow(start_date=current, end_date=min(current + width, date_range.end_date))
        )
        current += width
    return windows


def window_delay_milliseconds(window_delay: WindowDelay | None, already_applied: bool) -> int:
    if already_applied or window_delay is None:
        return 0
    return window_delay.to_milliseconds()


def format_epoch_millis(
    timestamp: int,
    fmt: str = DATE_FORMAT,
    timezone: str = DEFAULT_TIMEZONE,
) -> str:
    moment = pd.Timestamp(int(timestamp), unit="ms", tz="UTC").tz_convert(timezone)
    return moment.strftime(fmt)


def filter_with_date_range(
    items: Iterable[T] | None,
    date_range: TimeWindow,
    time_field: str = "plot_time",
) -> list[T]:
    """Keep items whose ``time_field`` lies in the range, both ends included."""
    if items is None:
        return []
    filtered: list[T] = []
    for item in items:
        time_value = _field_value(item, time_field)
        if time_value is not None and date_range.start_date <= time_value <= date_range.end_date:
            filtered.append(item)
    return filtered


def _field_value(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)
