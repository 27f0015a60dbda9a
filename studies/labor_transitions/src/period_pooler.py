"""
Period pooling.

Runs the transition extractor and control builder once per retained period,
tags each result with its period, and stacks them into one table with up to
one row per head per period. Column sets are harmonized before stacking: a
variable missing from one period is inserted as an explicit missing column
instead of being dropped from the union.
"""

import logging

import numpy as np
import pandas as pd
from pandas.api.types import is_bool_dtype, is_extension_array_dtype, is_integer_dtype

from studies.labor_transitions.src.cohort_filter import CohortFilter, CohortSelection
from studies.labor_transitions.src.controls import ControlBuilder
from studies.labor_transitions.src.diagnostics import RunDiagnostics
from studies.labor_transitions.src.transitions import TransitionExtractor

logger = logging.getLogger(__name__)

PERIOD_COLUMNS = ["period_id", "period_key", "year_t0", "year_t1", "design"]


def missing_column(index: pd.Index, dtype) -> pd.Series:
    """An all-missing column that keeps a nullable version of dtype."""
    if is_bool_dtype(dtype) and not is_extension_array_dtype(dtype):
        dtype = "boolean"
    elif is_integer_dtype(dtype) and not is_extension_array_dtype(dtype):
        dtype = "Int64"
    return pd.Series(np.nan, index=index).astype(dtype)


def harmonize_columns(
    frames: dict[str, pd.DataFrame],
    diagnostics: RunDiagnostics | None = None,
    country: str | None = None,
    by: str = "period",
) -> dict[str, pd.DataFrame]:
    """
    Give every frame the same columns, in the same order, with the same dtypes.

    Args:
        frames: Label -> DataFrame
        diagnostics: Where inserted columns are recorded
        country: Country tag for the diagnostics
        by: What the labels are, "period" or "country"

    Returns:
        Label -> DataFrame with the union of all columns
    """
    columns: list[str] = []
    dtypes: dict[str, object] = {}
    for frame in frames.values():
        for col in frame.columns:
            if col not in dtypes:
                columns.append(col)
                dtypes[col] = frame[col].dtype

    harmonized = {}
    for label, frame in frames.items():
        absent = [c for c in columns if c not in frame.columns]
        if absent:
            frame = frame.copy()
            for col in absent:
                frame[col] = missing_column(frame.index, dtypes[col])
            if diagnostics is not None:
                diagnostics.warn(
                    "column_harmonized",
                    f"Inserted missing columns {absent} so that {by} tables stack",
                    country=label if by == "country" else country,
                    period=label if by == "period" else None,
                    count=len(absent),
                )
        harmonized[label] = frame[columns]

    return harmonized


class PeriodPooler:
    """Builds and stacks head-period records for all retained periods."""

    def __init__(
        self,
        cohort_filter: CohortFilter,
        diagnostics: RunDiagnostics | None = None,
        country: str | None = None,
    ):
        self.cohort_filter = cohort_filter
        self.diagnostics = diagnostics or RunDiagnostics()
        self.country = country
        self.extractor = TransitionExtractor(diagnostics=self.diagnostics, country=country)
        self.controls = ControlBuilder()

    def build_period(self, panel: pd.DataFrame, selection: CohortSelection, period) -> pd.DataFrame:
        """Transition records plus baseline controls for one period."""
        rows = self.cohort_filter.slice(panel, selection, period)

        records = self.extractor.extract(rows, period.t0, period.t1)
        controls = self.controls.build(rows, period.t0)

        records = records.merge(controls, on="person_id", how="left", validate="one_to_one")
        records["period_id"] = period.period_id
        records["period_key"] = period.label
        records["year_t0"] = period.t0
        records["year_t1"] = period.t1
        records["design"] = selection.design

        return records

    def pool(self, panel: pd.DataFrame, selection: CohortSelection) -> pd.DataFrame:
        """
        Stack the head-period records of every retained period.

        Args:
            panel: Person-year panel with derived indicators
            selection: Period eligibility decision for the country

        Returns:
            DataFrame with one row per head per retained period
        """
        frames = {
            period.label: self.build_period(panel, selection, period)
            for period in selection.periods
        }
        frames = harmonize_columns(frames, self.diagnostics, self.country)

        pooled = pd.concat(list(frames.values()), ignore_index=True)

        logger.info(
            f"Pooled {len(frames)} period(s) ({selection.design} design): "
            f"{len(pooled):,} head-period rows, {pooled['person_id'].nunique():,} heads"
        )
        return pooled
