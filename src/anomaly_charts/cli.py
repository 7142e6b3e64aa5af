from __future__ import annotations

from pathlib import Path

import typer

from anomaly_charts.config import DEFAULT_CONFIG_PATH, AppConfig, load_config
from anomaly_charts.features.entities import (
    count_entity_combos,
    ensure_combo_limit,
    entity_list_label,
    expand_entity_combos,
)
from anomaly_charts.io.result_sets import ResultBundle, load_result_bundle
from anomaly_charts.logging import configure_logging
from anomaly_charts.paths import build_output_paths
from anomaly_charts.pipeline.charts import build_chart_artifacts, build_heatmap_artifacts
from anomaly_charts.pipeline.run_all import run_all
from anomaly_charts.types import Entity

app = typer.Typer(no_args_is_help=True, add_completion=False)


def _load_app_config(config_path: Path) -> AppConfig:
    try:
        return load_config(config_path)
    except ValueError as exc:
        raise typer.BadParameter(f"Invalid config {config_path}: {exc}") from exc


def _load_bundle(bundle_path: Path) -> ResultBundle:
    try:
        return load_result_bundle(bundle_path)
    except ValueError as exc:
        raise typer.BadParameter(f"Invalid result bundle {bundle_path}: {exc}") from exc


def _parse_parent(values: list[str]) -> list[Entity]:
    entities = []
    for value in values:
        name, sep, entity_value = value.partition("=")
        if not sep or not name:
            raise typer.BadParameter(f"Expected FIELD=VALUE for --parent, got '{value}'")
        entities.append(Entity(name=name, value=entity_value))
    return entities


def _parse_children(values: list[str]) -> dict[str, list[str]]:
    options: dict[str, list[str]] = {}
    for value in values:
        name, sep, raw_options = value.partition("=")
        if not sep or not name:
            raise typer.BadParameter(f"Expected FIELD=V1,V2 for --child, got '{value}'")
        options.setdefault(name, []).extend(
            option.strip() for option in raw_options.split(",") if option.strip()
        )
    return options


@app.command()
def chart(
    bundle: Path = typer.Option(..., exists=True, readable=True, resolve_path=True),
    out: Path = typer.Option(Path("out"), resolve_path=True),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, exists=True, readable=True, resolve_path=True),
) -> None:
    """Downsample anomaly results and annotate missing feature data."""
    configure_logging()
    cfg = _load_app_config(config)
    result_bundle = _load_bundle(bundle)
    paths = build_output_paths(out)
    artifacts = build_chart_artifacts(result_bundle, out_dir=paths.root, config=cfg)
    typer.echo(f"Chart complete. Tables: {', '.join(sorted(artifacts.keys()))}")


@app.command()
def heatmap(
    bundle: Path = typer.Option(..., exists=True, readable=True, resolve_path=True),
    out: Path = typer.Option(Path("out"), resolve_path=True),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, exists=True, readable=True, resolve_path=True),
) -> None:
    """Build the entity anomaly heatmap for a high-cardinality detector."""
    configure_logging()
    cfg = _load_app_config(config)
    result_bundle = _load_bundle(bundle)
    paths = build_output_paths(out)
    try:
        matrix = build_heatmap_artifacts(result_bundle, out_dir=paths.root, config=cfg)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    suffix = " (placeholder)" if matrix.is_placeholder else ""
    typer.echo(f"Heatmap complete. Rows: {len(matrix.rows)} Cells: {len(matrix.windows)}{suffix}")


@app.command("entity-combos")
def entity_combos(
    parent: list[str] = typer.Option([], help="Parent entity as FIELD=VALUE; repeatable."),
    child: list[str] = typer.Option([], help="Child field options as FIELD=V1,V2; repeatable."),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, exists=True, readable=True, resolve_path=True),
) -> None:
    """List every parent + child entity combination that would be charted."""
    configure_logging()
    cfg = _load_app_config(config)
    parent_entities = _parse_parent(parent)
    child_options = {
        name: values[: cfg.entities.top_child_entities_to_fetch]
        for name, values in _parse_children(child).items()
    }
    try:
        ensure_combo_limit(
            count_entity_combos(child_options),
            limit=cfg.entities.max_time_series_to_display,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    combos = expand_entity_combos(parent_entities, child_options)
    typer.echo(f"Entity combinations: {len(combos)}")
    for combo in combos:
        typer.echo(f"- {entity_list_label(combo, ' / ')}")


@app.command("run-all")
def run_all_command(
    bundle: Path = typer.Option(..., exists=True, readable=True, resolve_path=True),
    out: Path = typer.Option(Path("out"), resolve_path=True),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, exists=True, readable=True, resolve_path=True),
) -> None:
    """Run chart and heatmap outputs for one result bundle."""
    configure_logging()
    cfg = _load_app_config(config)
    _load_bundle(bundle)
    try:
        summary_path = run_all(bundle_path=bundle, out_dir=out, config=cfg)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(f"Run complete. Summary: {summary_path}")


if __name__ == "__main__":
    app()
