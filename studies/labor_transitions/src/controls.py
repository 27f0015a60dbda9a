"""
Baseline controls for household-head transitions.

Controls are always measured at the baseline year t0 of a period, never at
t1, and collapsed to one value per head with the same declared reducers as
the transition endpoints.
"""

import logging

import pandas as pd

from studies.labor_transitions.src.indicators import (
    EDUCATION_SECONDARY,
    EDUCATION_TERTIARY,
    as_float,
    to_flag,
)
from studies.labor_transitions.src.transitions import collapse_person_year, label_max

logger = logging.getLogger(__name__)


CONTROL_REDUCERS = {
    "household_size": "mean",
    "num_children": "mean",
    "partner_present": "max",
    "education_level": "max",
    "health_shock_flag": "max",
    "age_band": "max",
    "urban_flag": "max",
    "male_flag": "max",
    "employed": "max",
    "survey_weight": "mean",
}

# Age band dummies; band 2 (25-40) is the omitted reference
AGE_BAND_DUMMIES = {
    "age_under25_t0": 1,
    "age_41_64_t0": 3,
    "age_65plus_t0": 4,
}

CONTROL_COLUMNS = [
    "region_t0",
    "household_size_t0",
    "num_children_t0",
    "partner_t0",
    "educ_secondary_t0",
    "educ_tertiary_t0",
    "health_shock_t0",
    *AGE_BAND_DUMMIES,
    "urban_t0",
    "male_t0",
    "n_workers_t0",
    "weight",
]


class ControlBuilder:
    """Collapses baseline-year covariates to one row per head."""

    def build(self, rows: pd.DataFrame, t0: int) -> pd.DataFrame:
        """
        Build baseline controls.

        Args:
            rows: Person-years with derived indicators
            t0: Baseline year of the period

        Returns:
            DataFrame with person_id and CONTROL_COLUMNS, one row per head
            observed at t0
        """
        baseline = rows[rows["year"] == t0]
        collapsed = collapse_person_year(baseline, CONTROL_REDUCERS, keys=("person_id",))

        controls = pd.DataFrame(index=collapsed.index)
        controls["region_t0"] = label_max(baseline, "region_code").reindex(controls.index)
        controls["household_size_t0"] = collapsed["household_size"]
        controls["num_children_t0"] = collapsed["num_children"]
        controls["partner_t0"] = collapsed["partner_present"]

        education = as_float(collapsed["education_level"])
        controls["educ_secondary_t0"] = to_flag(
            education == EDUCATION_SECONDARY, education.notna()
        )
        controls["educ_tertiary_t0"] = to_flag(
            education == EDUCATION_TERTIARY, education.notna()
        )
        controls["health_shock_t0"] = collapsed["health_shock_flag"]

        band = as_float(collapsed["age_band"])
        for name, code in AGE_BAND_DUMMIES.items():
            controls[name] = to_flag(band == code, band.notna())

        controls["urban_t0"] = collapsed["urban_flag"]
        controls["male_t0"] = collapsed["male_flag"]
        # Proxy: the head's own baseline employment, not a household count
        controls["n_workers_t0"] = collapsed["employed"]
        controls["weight"] = collapsed["survey_weight"]

        logger.debug(f"Built baseline controls for {len(controls):,} heads at {t0}")
        return controls.reset_index()
