"""
Person-year panel loader.

Reads one country's survey extract and maps it onto the canonical
person-year schema declared in country_schema, using the country's column
rules. Required identifier/period fields that cannot be resolved are fatal;
optional fields that a country does not collect are inserted as explicit
missing columns and reported in the run diagnostics.
"""

import logging
from pathlib import Path

import numpy as np
import pandas as pd

from config.settings import Settings, get_settings
from studies.labor_transitions.src.country_schema import (
    CANONICAL_FIELDS,
    CODE_FIELDS,
    FLAG_FIELDS,
    ID_FIELDS,
    NUMERIC_FIELDS,
    REQUIRED_FIELDS,
    TRANSFORMS,
    CountrySpec,
)
from studies.labor_transitions.src.diagnostics import (
    PipelineError,
    RunDiagnostics,
    SchemaResolutionError,
)

logger = logging.getLogger(__name__)

# Kept as labels rather than numbers (some surveys name their regions)
LABEL_FIELDS = ["region_code"]

READERS = {
    ".csv": pd.read_csv,
    ".parquet": pd.read_parquet,
    ".dta": lambda path: pd.read_stata(path, convert_categoricals=False),
}


def _coerce_label(series: pd.Series) -> pd.Series:
    """Identifiers and labels as strings, without a trailing '.0' from floats."""
    if pd.api.types.is_numeric_dtype(series):
        series = pd.to_numeric(series, errors="coerce").round().astype("Int64")
    return series.astype("string")


def _coerce_flag(series: pd.Series) -> pd.Series:
    values = pd.to_numeric(series, errors="coerce")
    return values.where(values.isin([0, 1])).astype("Int8")


class PanelLoader:
    """Loads and normalizes a country's person-year panel."""

    def __init__(
        self,
        settings: Settings | None = None,
        diagnostics: RunDiagnostics | None = None,
    ):
        self.settings = settings or get_settings()
        self.diagnostics = diagnostics or RunDiagnostics()

    def input_path(self, spec: CountrySpec) -> Path:
        """Resolve a country's input file against the data directory."""
        if spec.path.is_absolute():
            return spec.path
        return self.settings.resolve(self.settings.data_dir) / spec.path

    def read(self, spec: CountrySpec) -> pd.DataFrame:
        """Read the raw extract for a country."""
        path = self.input_path(spec)
        reader = READERS.get(path.suffix.lower())

        if reader is None:
            raise PipelineError(
                f"Unsupported input format '{path.suffix}' for {path}. "
                f"Supported: {sorted(READERS)}",
                country=spec.code,
            )
        if not path.exists():
            raise PipelineError(f"Input file not found: {path}", country=spec.code)

        logger.info(f"Reading {spec.name} panel from {path}")
        return reader(path)

    def load(self, spec: CountrySpec) -> pd.DataFrame:
        """Read and normalize a country's panel."""
        return self.normalize(self.read(spec), spec)

    def normalize(self, raw: pd.DataFrame, spec: CountrySpec) -> pd.DataFrame:
        """
        Map a raw extract onto the canonical person-year schema.

        Args:
            raw: Raw survey extract with country-specific column names
            spec: Country specification holding the column rules

        Returns:
            DataFrame with exactly the canonical columns, restricted to the
            study window
        """
        panel = pd.DataFrame(index=raw.index)
        unavailable = []

        for canonical in CANONICAL_FIELDS:
            values = spec.rule(canonical).apply(raw)

            if values is None and canonical == "is_head":
                values = self._head_from_relationship(raw, spec)

            if values is None:
                if canonical in REQUIRED_FIELDS:
                    raise SchemaResolutionError(
                        f"No source column for required field. "
                        f"Tried: {spec.rule(canonical).sources}. "
                        f"Available columns: {list(raw.columns)}",
                        country=spec.code,
                        field=canonical,
                    )
                unavailable.append(canonical)
                panel[canonical] = np.nan
                continue

            panel[canonical] = values

        panel = self._coerce_types(panel)

        if unavailable:
            self.diagnostics.warn(
                "missing_covariate",
                f"Fields not collected, kept as missing: {unavailable}",
                country=spec.code,
                count=len(unavailable),
            )

        panel = self._drop_unidentified(panel, spec)
        panel = self._restrict_window(panel, spec)
        self._report_duplicates(panel, spec)

        logger.info(
            f"{spec.name}: {len(panel):,} person-years, "
            f"{panel['person_id'].nunique():,} persons, "
            f"years {sorted(panel['year'].unique().tolist())}"
        )

        return panel.reset_index(drop=True)

    def _head_from_relationship(
        self, raw: pd.DataFrame, spec: CountrySpec
    ) -> pd.Series | None:
        """Fallback head flag from the relationship-to-head code."""
        relationship = spec.rule("relationship_code").apply(raw)
        if relationship is None:
            return None

        self.diagnostics.info(
            "head_from_relationship",
            "No head flag column; household heads derived from relationship code",
            country=spec.code,
        )
        return TRANSFORMS["head_from_relationship"](relationship)

    def _coerce_types(self, panel: pd.DataFrame) -> pd.DataFrame:
        for col in ID_FIELDS + LABEL_FIELDS:
            panel[col] = _coerce_label(panel[col])

        panel["year"] = pd.to_numeric(panel["year"], errors="coerce").astype("Int64")

        for col in FLAG_FIELDS:
            panel[col] = _coerce_flag(panel[col])

        for col in CODE_FIELDS + NUMERIC_FIELDS:
            if col in LABEL_FIELDS:
                continue
            panel[col] = pd.to_numeric(panel[col], errors="coerce").astype("float64")

        return panel

    def _drop_unidentified(self, panel: pd.DataFrame, spec: CountrySpec) -> pd.DataFrame:
        unidentified = panel["person_id"].isna() | panel["year"].isna()
        n_dropped = int(unidentified.sum())

        if n_dropped > 0:
            self.diagnostics.warn(
                "unidentified_rows",
                f"Dropped {n_dropped} rows without person id or year",
                country=spec.code,
                count=n_dropped,
            )

        panel = panel[~unidentified].copy()
        panel["year"] = panel["year"].astype(int)
        return panel

    def _restrict_window(self, panel: pd.DataFrame, spec: CountrySpec) -> pd.DataFrame:
        start = self.settings.study_start_year
        end = self.settings.study_end_year
        in_window = panel["year"].between(start, end)

        if not in_window.all():
            logger.info(
                f"{spec.name}: dropping {int((~in_window).sum())} person-years "
                f"outside study window {start}-{end}"
            )

        return panel[in_window]

    def _report_duplicates(self, panel: pd.DataFrame, spec: CountrySpec) -> None:
        duplicated = panel.duplicated(subset=["person_id", "year"], keep=False)
        n_duplicated = int(duplicated.sum())

        if n_duplicated > 0:
            n_keys = panel.loc[duplicated, ["person_id", "year"]].drop_duplicates().shape[0]
            self.diagnostics.warn(
                "duplicate_person_year",
                f"{n_keys} person-years appear more than once ({n_duplicated} rows); "
                "they are collapsed with the declared per-field reducers",
                country=spec.code,
                count=n_keys,
            )
