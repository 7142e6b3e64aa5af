from __future__ import annotations

from pathlib import Path
from typing import Sequence

import matplotlib.pyplot as plt
import pandas as pd

from anomaly_charts.preprocess.time import DEFAULT_TIMEZONE


def to_datetimes(timestamps: Sequence[int], timezone: str = DEFAULT_TIMEZONE) -> pd.DatetimeIndex:
    """Epoch milliseconds as naive wall-clock datetimes in ``timezone`` for plotting."""
    index = pd.to_datetime(list(timestamps), unit="ms", utc=True)
    return index.tz_convert(timezone).tz_localize(None)


def save_figure(path: Path, dpi: int = 120) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    plt.tight_layout()
    plt.savefig(path, dpi=dpi)
    plt.close()
    return path
