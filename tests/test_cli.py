from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from anomaly_charts.cli import app

MINUTE_MS = 60_000


def _write_config(tmp_path: Path) -> Path:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "outputs:\n  tables_format: csv\n  render_figures: false\n", encoding="utf-8"
    )
    return config_path


def _write_bundle(tmp_path: Path, entity_summaries: list[dict] | None = None) -> Path:
    payload = {
        "detector": {"interval_minutes": 1, "category_fields": ["host"]},
        "date_range": {"start_date": 0, "end_date": 60 * MINUTE_MS},
        "anomalies": [],
        "entity_summaries": entity_summaries or [],
    }
    bundle_path = tmp_path / "bundle.json"
    bundle_path.write_text(json.dumps(payload), encoding="utf-8")
    return bundle_path


def test_cli_help() -> None:
    runner = CliRunner()
    result = runner.invoke(app, ["--help"])

    assert result.exit_code == 0
    assert "chart" in result.stdout
    assert "heatmap" in result.stdout
    assert "entity-combos" in result.stdout
    assert "run-all" in result.stdout


def test_entity_combos_lists_parent_and_children(tmp_path: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(
        app,
        [
            "entity-combos",
            "--parent",
            "region=eu",
            "--child",
            "host=h1,h2",
            "--config",
            str(_write_config(tmp_path)),
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Entity combinations: 2" in result.stdout
    assert "- eu / h1" in result.stdout
    assert "- eu / h2" in result.stdout


def test_entity_combos_rejects_too_many_series(tmp_path: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(
        app,
        [
            "entity-combos",
            "--parent",
            "region=eu",
            "--child",
            "host=h1,h2",
            "--child",
            "az=a,b,c",
            "--config",
            str(_write_config(tmp_path)),
        ],
    )

    assert result.exit_code == 2
    assert "Entity combinations" not in result.stdout


def test_entity_combos_rejects_malformed_parent(tmp_path: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(
        app,
        ["entity-combos", "--parent", "region", "--config", str(_write_config(tmp_path))],
    )

    assert result.exit_code == 2


def test_heatmap_command_reports_placeholder(tmp_path: Path) -> None:
    out_dir = tmp_path / "out"
    runner = CliRunner()
    result = runner.invoke(
        app,
        [
            "heatmap",
            "--bundle",
            str(_write_bundle(tmp_path)),
            "--out",
            str(out_dir),
            "--config",
            str(_write_config(tmp_path)),
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Heatmap complete. Rows: 10 Cells: 20 (placeholder)" in result.stdout
    assert (out_dir / "tables" / "heatmap_cells.csv").exists()
    assert (out_dir / "summary" / "heatmap_payload.json").exists()


def test_heatmap_command_uses_entity_summaries(tmp_path: Path) -> None:
    summaries = [
        {
            "entityList": [{"name": "host", "value": "h1"}],
            "anomalySummaries": [{"startTime": 0, "maxAnomaly": 0.5, "anomalyCount": 2}],
        }
    ]
    runner = CliRunner()
    result = runner.invoke(
        app,
        [
            "heatmap",
            "--bundle",
            str(_write_bundle(tmp_path, summaries)),
            "--out",
            str(tmp_path / "out"),
            "--config",
            str(_write_config(tmp_path)),
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Heatmap complete. Rows: 1 Cells: 20" in result.stdout
    assert "placeholder" not in result.stdout


def test_chart_command_writes_summary(tmp_path: Path) -> None:
    out_dir = tmp_path / "out"
    runner = CliRunner()
    result = runner.invoke(
        app,
        [
            "chart",
            "--bundle",
            str(_write_bundle(tmp_path)),
            "--out",
            str(out_dir),
            "--config",
            str(_write_config(tmp_path)),
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Chart complete. Tables:" in result.stdout
    summary = json.loads((out_dir / "summary" / "chart_summary.json").read_text(encoding="utf-8"))
    assert summary["missing_data"]["severity"] == "GREEN"
    assert summary["anomaly_summary"]["last_anomaly_occurrence"] == "-"


def test_chart_command_rejects_invalid_bundle(tmp_path: Path) -> None:
    bundle_path = tmp_path / "bundle.json"
    bundle_path.write_text(json.dumps({"detector": {}}), encoding="utf-8")
    runner = CliRunner()
    result = runner.invoke(
        app,
        ["chart", "--bundle", str(bundle_path), "--config", str(_write_config(tmp_path))],
    )

    assert result.exit_code == 2


def test_heatmap_command_rejects_grade_above_one(tmp_path: Path) -> None:
    summaries = [
        {
            "entityList": [{"name": "host", "value": "h1"}],
            "anomalySummaries": [{"startTime": 0, "maxAnomaly": 1.5, "anomalyCount": 1}],
        }
    ]
    runner = CliRunner()
    result = runner.invoke(
        app,
        [
            "heatmap",
            "--bundle",
            str(_write_bundle(tmp_path, summaries)),
            "--out",
            str(tmp_path / "out"),
            "--config",
            str(_write_config(tmp_path)),
        ],
    )

    assert result.exit_code == 2
