from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

TABLES_DIR = "tables"
FIGURES_DIR = "figures"
SUMMARY_DIR = "summary"


@dataclass(frozen=True)
class OutputPaths:
    """Artifact layout for one render: ``tables/``, ``figures/`` and ``summary/`` under a root."""

    root: Path
    tables: Path
    figures: Path
    summary: Path

    def table_path(self, name: str) -> Path:
        # suffix is applied by write_table
        return self.tables / name

    def figure_path(self, name: str, fmt: str = "png") -> Path:
        return self.figures / f"{_safe_name(name)}.{fmt}"

    def summary_path(self, name: str) -> Path:
        return self.summary / f"{name}.json"


def _safe_name(name: str) -> str:
    # feature names may carry path separators or spaces
    return "".join(char if char.isalnum() or char in "-_." else "_" for char in name)


def build_output_paths(out_dir: Path) -> OutputPaths:
    paths = OutputPaths(
        root=out_dir,
        tables=out_dir / TABLES_DIR,
        figures=out_dir / FIGURES_DIR,
        summary=out_dir / SUMMARY_DIR,
    )
    for path in (paths.root, paths.tables, paths.figures, paths.summary):
        path.mkdir(parents=True, exist_ok=True)
    return paths
