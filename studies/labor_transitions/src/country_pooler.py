"""
Cross-country pooling and harmonization.

Concatenates the period-pooled head records of every country into one
analysis table:
- country tag and country x baseline-region fixed-effect key;
- equal_weight: survey weight rescaled so each country sums to 100;
- late covariate nulling: a covariate the source country never collected is
  set to 0 (not missing) so that listwise deletion does not drop the country.
"""

import logging

import numpy as np
import pandas as pd

from studies.labor_transitions.src.diagnostics import PipelineError, RunDiagnostics
from studies.labor_transitions.src.indicators import as_float
from studies.labor_transitions.src.period_pooler import harmonize_columns
from studies.labor_transitions.src.regressions import CONTROL_SETS, OUTCOMES, REGRESSORS

logger = logging.getLogger(__name__)

KEY_COLUMNS = ["person_id", "household_id", "period_id", "weight"]

LEADING_COLUMNS = [
    "country",
    "person_id",
    "household_id",
    "period_id",
    "period_key",
    "year_t0",
    "year_t1",
    "design",
]

EQUAL_WEIGHT_TOTAL = 100.0


class CountryPooler:
    """Stacks harmonized per-country transition tables."""

    def __init__(self, diagnostics: RunDiagnostics | None = None):
        self.diagnostics = diagnostics or RunDiagnostics()

    def pool(
        self,
        frames: dict[str, pd.DataFrame],
        missing_covariates: dict[str, list[str]] | None = None,
    ) -> pd.DataFrame:
        """
        Pool country tables into one analysis table.

        Inputs are not modified; pooling the same inputs twice gives the same
        rows and columns.

        Args:
            frames: Country code -> period-pooled head records
            missing_covariates: Country code -> covariates to null to 0

        Returns:
            Pooled DataFrame with country, country_region and equal_weight
        """
        if not frames:
            raise PipelineError("Nothing to pool: no country tables were built")

        missing_covariates = missing_covariates or {}

        tagged = {code: self._tag(code, frame) for code, frame in frames.items()}
        tagged = harmonize_columns(tagged, self.diagnostics, by="country")
        nulled = [
            self._null_covariates(code, frame, missing_covariates.get(code, []))
            for code, frame in tagged.items()
        ]

        pooled = pd.concat(nulled, ignore_index=True)
        ordered = [c for c in LEADING_COLUMNS if c in pooled.columns]
        pooled = pooled[ordered + [c for c in pooled.columns if c not in ordered]]

        logger.info(
            f"Pooled {len(frames)} countries: {len(pooled):,} head-period rows "
            f"({', '.join(f'{c}={len(f):,}' for c, f in frames.items())})"
        )
        return pooled

    def _tag(self, code: str, frame: pd.DataFrame) -> pd.DataFrame:
        missing = [c for c in KEY_COLUMNS if c not in frame.columns]
        if missing:
            raise PipelineError(
                f"Country table is missing key columns {missing}",
                country=code,
                field=missing[0],
            )
        if frame.empty:
            raise PipelineError("Country table has no rows", country=code)

        df = frame.copy()
        df["country"] = code

        if "region_t0" in df.columns:
            region = df["region_t0"].astype("string")
        else:
            region = pd.Series(pd.NA, index=df.index, dtype="string")
        df["country_region"] = (code + "_" + region).fillna(f"{code}_unknown")

        weight = as_float(df["weight"])
        total = weight.sum()
        if not np.isfinite(total) or total <= 0:
            raise PipelineError(
                f"Survey weights sum to {total}; cannot build equal_weight",
                country=code,
                field="weight",
            )
        df["equal_weight"] = weight / total * EQUAL_WEIGHT_TOTAL

        return df

    def _null_covariates(self, code: str, frame: pd.DataFrame, covariates: list[str]) -> pd.DataFrame:
        if not covariates:
            return frame

        df = frame.copy()
        for col in covariates:
            dtype = df[col].dtype if col in df.columns else "Int8"
            df[col] = pd.Series(0, index=df.index).astype(dtype)

        self.diagnostics.info(
            "covariate_nulled",
            f"Set {covariates} to 0: not collected in the source survey",
            country=code,
            count=len(covariates),
        )
        return df


def outcome_sample_sizes(pooled: pd.DataFrame, control_set: str = "full") -> pd.DataFrame:
    """
    Complete-case regression sample size per country and outcome.

    A row counts when it is in the outcome's baseline sample and the outcome,
    every regressor and every control of the control set are observed.

    Args:
        pooled: Pooled analysis table
        control_set: Name of the control set used for the count

    Returns:
        DataFrame with columns country, outcome, n_obs
    """
    required = REGRESSORS + CONTROL_SETS[control_set]
    complete = pooled[[c for c in required if c in pooled.columns]].notna().all(axis=1)

    rows = []
    for outcome in OUTCOMES:
        in_sample = outcome.sample(pooled) & pooled[outcome.name].notna() & complete
        counts = in_sample.groupby(pooled["country"]).sum()
        for country, n in counts.items():
            rows.append({"country": country, "outcome": outcome.name, "n_obs": int(n)})

    return pd.DataFrame(rows, columns=["country", "outcome", "n_obs"])
