from __future__ import annotations

import logging
from pathlib import Path

from anomaly_charts.config import AppConfig
from anomaly_charts.io.result_sets import load_result_bundle
from anomaly_charts.io.write import write_summary
from anomaly_charts.paths import build_output_paths
from anomaly_charts.pipeline.charts import build_chart_artifacts, build_heatmap_artifacts

LOGGER = logging.getLogger(__name__)


def run_all(bundle_path: Path, out_dir: Path, config: AppConfig) -> Path:
    """Render chart and heatmap outputs for one result bundle and index them."""
    bundle = load_result_bundle(bundle_path)
    paths = build_output_paths(out_dir)

    chart_tables = build_chart_artifacts(bundle, out_dir=paths.root, config=config)
    heatmap_rows = 0
    heatmap_placeholder = None
    if bundle.detector.is_high_cardinality:
        matrix = build_heatmap_artifacts(bundle, out_dir=paths.root, config=config)
        heatmap_rows = len(matrix.rows)
        heatmap_placeholder = matrix.is_placeholder
    else:
        LOGGER.info("Detector has no category fields; skipping entity heatmap")

    return write_summary(
        {
            "bundle": str(bundle_path),
            "tables": {name: int(len(table)) for name, table in chart_tables.items()},
            "heatmap_rows": heatmap_rows,
            "heatmap_placeholder": heatmap_placeholder,
            "timezone": config.time.timezone,
        },
        paths.summary_path("run_summary"),
    )
