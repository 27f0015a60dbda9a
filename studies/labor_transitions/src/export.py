"""
Output writers: per-country and pooled transition tables, regression tables,
graph data and the run diagnostics.
"""

import json
import logging
from pathlib import Path

import pandas as pd

from config.settings import Settings, get_settings
from studies.labor_transitions.src.diagnostics import RunDiagnostics
from studies.labor_transitions.src.regressions import TransitionRegressions

logger = logging.getLogger(__name__)

TABLE_FORMATS = ("parquet", "csv")


class TransitionExporter:
    """Writes pipeline outputs under the configured output directory."""

    def __init__(self, settings: Settings | None = None, output_dir: Path | None = None):
        self.settings = settings or get_settings()
        self.output_dir = output_dir or self.settings.resolve(self.settings.output_dir)

    def write_table(
        self,
        df: pd.DataFrame,
        name: str,
        subdir: str = "",
        formats: tuple[str, ...] = TABLE_FORMATS,
        index: bool = False,
    ) -> list[Path]:
        """
        Write a table in each requested format.

        Args:
            df: Table to write
            name: File stem
            subdir: Subdirectory of the output directory
            formats: Any of "parquet" and "csv"
            index: Whether to write the index

        Returns:
            Paths written
        """
        directory = self.output_dir / subdir
        directory.mkdir(parents=True, exist_ok=True)

        paths = []
        for fmt in formats:
            filepath = directory / f"{name}.{fmt}"
            if fmt == "parquet":
                df.to_parquet(filepath, index=index)
            elif fmt == "csv":
                df.to_csv(filepath, index=index)
            else:
                raise ValueError(f"Unsupported output format: {fmt}")
            paths.append(filepath)

        logger.info(f"Saved {name} ({len(df):,} rows) to {directory}")
        return paths

    def write_country(self, code: str, records: pd.DataFrame) -> list[Path]:
        return self.write_table(records, f"transitions_{code}", subdir="countries")

    def write_pooled(self, pooled: pd.DataFrame, sample_sizes: pd.DataFrame | None = None) -> list[Path]:
        paths = self.write_table(pooled, "transitions_pooled")
        if sample_sizes is not None:
            paths += self.write_table(sample_sizes, "outcome_sample_sizes", formats=("csv",))
        return paths

    def write_estimates(self, regressions: TransitionRegressions) -> list[Path]:
        """Coefficient table, formatted table, graph data and fit summary for one sample."""
        subdir = f"estimates/{regressions.sample}"
        paths = self.write_table(regressions.coefficient_table(), "coefficients", subdir=subdir)
        paths += self.write_table(
            regressions.formatted_table(), "table", subdir=subdir, formats=("csv",), index=True
        )
        paths += self.write_table(regressions.graph_data(), "graph_data", subdir=subdir)

        summary_path = self.output_dir / subdir / "summary.json"
        with open(summary_path, "w") as f:
            json.dump(regressions.to_dict(), f, indent=2)
        paths.append(summary_path)
        return paths

    def write_diagnostics(self, diagnostics: RunDiagnostics) -> list[Path]:
        """JSON records plus the plain-text end-of-run report."""
        json_path = self.output_dir / "diagnostics.json"
        diagnostics.save(json_path)

        report_path = self.output_dir / "diagnostics.txt"
        report_path.write_text(diagnostics.generate_report())
        return [json_path, report_path]
