"""
Baseline/endline transition extraction.

For one period (t0, t1), projects each eligible household head's t0 and t1
person-year values onto a single row and derives the transition outcomes:

    poverty:        fell_into_poverty, escaped_poverty
    vulnerability:  fell_into_vulnerability, escaped_vulnerability
    employment:     entered_job, exited_job, stayed_employed, stayed_not_employed
    job quality:    skill_increased, skill_decreased, same_skill, changed_sector
    transfers:      started_transfers, stopped_transfers

Missing-value policy (per outcome, not inherited from a sentinel):
- fell_into_* is defined only where the baseline status is 0 and escaped_*
  only where it is 1; both are <NA> when either endpoint is unobserved.
- Employment and skill transitions are <NA> when employment is unobserved at
  either endpoint; skill transitions of heads employed at both endpoints are
  <NA> when a skill tier is unobserved.
- Transfer transitions are 0 (never <NA>) when either endpoint is missing.

The vulnerability line is above the poverty line, so every poor head is also
vulnerable. "Vulnerable but not poor" (vulnerable_not_poor_t0) is the
baseline population at risk of falling into poverty from above.
"""

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from studies.labor_transitions.src.diagnostics import RunDiagnostics
from studies.labor_transitions.src.indicators import as_float, to_flag

logger = logging.getLogger(__name__)


# Reducer used to collapse duplicate person-years, per endpoint attribute.
# max for flags and categories (any positive observation wins); mean for
# continuous measures, so that duplicates never pick the highest income.
FIELD_REDUCERS = {
    "poor": "max",
    "vulnerable": "max",
    "income": "mean",
    "employed": "max",
    "skill_tier": "max",
    "sector": "max",
    "transfers": "max",
}

EMPLOYMENT_CATEGORIES = [
    "entered_job",
    "exited_job",
    "skill_increased",
    "skill_decreased",
    "same_skill",
]

SKILL_CHANGES = ["skill_increased", "skill_decreased", "same_skill"]

WELFARE_TRANSITIONS = [
    "fell_into_poverty",
    "escaped_poverty",
    "fell_into_vulnerability",
    "escaped_vulnerability",
]

TRANSITION_COLUMNS = WELFARE_TRANSITIONS + [
    "vulnerable_not_poor_t0",
    "entered_job",
    "exited_job",
    "stayed_employed",
    "stayed_not_employed",
    "skill_increased",
    "skill_decreased",
    "same_skill",
    "changed_sector",
    "started_transfers",
    "stopped_transfers",
]


def collapse_person_year(
    rows: pd.DataFrame,
    reducers: dict[str, str],
    keys: tuple[str, ...] = ("person_id", "year"),
) -> pd.DataFrame:
    """
    Collapse rows to one per key using a declared reducer per column.

    On keys with a single row every reducer is the identity.

    Args:
        rows: Person-year rows
        reducers: Column -> "max" or "mean"
        keys: Grouping keys

    Returns:
        DataFrame indexed by keys, one column per reducer entry
    """
    for col, how in reducers.items():
        if how not in ("max", "mean"):
            raise ValueError(f"Reducer for '{col}' must be 'max' or 'mean', got '{how}'")

    collapsed = rows.groupby(list(keys), sort=True)[list(reducers)].agg(reducers)

    for col, how in reducers.items():
        if how == "mean":
            collapsed[col] = as_float(collapsed[col])
        else:
            collapsed[col] = as_float(collapsed[col]).round().astype("Int8")

    return collapsed


def label_max(rows: pd.DataFrame, col: str, key: str = "person_id") -> pd.Series:
    """Largest non-missing label per key (order-independent, works on strings)."""
    present = rows.loc[rows[col].notna(), [key, col]]
    ordered = present.sort_values([key, col], ascending=[True, False], kind="mergesort")
    return ordered.drop_duplicates(subset=key, keep="first").set_index(key)[col]


@dataclass
class ConsistencyIssue:
    """A failed consistency check on transition flags."""

    code: str
    n_rows: int
    message: str


def check_consistency(records: pd.DataFrame) -> list[ConsistencyIssue]:
    """
    Check that transition categories are mutually exclusive and that the
    redundant aggregates agree with their components.

    The flags are reported, never corrected.
    """
    issues = []

    categories = records[EMPLOYMENT_CATEGORIES].apply(as_float).fillna(0)
    overlapping = int((categories.sum(axis=1) > 1).sum())
    if overlapping:
        issues.append(
            ConsistencyIssue(
                code="exclusivity_violation",
                n_rows=overlapping,
                message=(
                    f"{overlapping} heads have more than one of "
                    f"{EMPLOYMENT_CATEGORIES} set"
                ),
            )
        )

    skills = records[SKILL_CHANGES].apply(as_float)
    stayed = as_float(records["stayed_employed"])
    comparable = skills.notna().all(axis=1) & stayed.notna()
    mismatched = int((skills.sum(axis=1)[comparable] != stayed[comparable]).sum())
    if mismatched:
        issues.append(
            ConsistencyIssue(
                code="flag_sum_mismatch",
                n_rows=mismatched,
                message=(
                    f"{mismatched} heads where skill_increased + skill_decreased + "
                    "same_skill != stayed_employed"
                ),
            )
        )

    states = records[
        ["entered_job", "exited_job", "stayed_employed", "stayed_not_employed"]
    ].apply(as_float)
    observed = states.notna().all(axis=1)
    not_one = int((states.sum(axis=1)[observed] != 1).sum())
    if not_one:
        issues.append(
            ConsistencyIssue(
                code="flag_sum_mismatch",
                n_rows=not_one,
                message=f"{not_one} heads whose employment states do not sum to 1",
            )
        )

    return issues


class TransitionExtractor:
    """Builds one baseline/endline record per household head for a period."""

    def __init__(
        self,
        diagnostics: RunDiagnostics | None = None,
        country: str | None = None,
    ):
        self.diagnostics = diagnostics or RunDiagnostics()
        self.country = country

    def extract(self, rows: pd.DataFrame, t0: int, t1: int) -> pd.DataFrame:
        """
        Project t0 and t1 person-years onto one row per head.

        Args:
            rows: Person-years (with derived indicators) of the heads
                eligible for this period
            t0: Baseline year
            t1: Endline year

        Returns:
            DataFrame with person_id, household_id, <attr>_t0, <attr>_t1 and
            the transition columns. Heads without both endpoints are omitted.
        """
        period = f"{t0}-{t1}"
        rows = rows[rows["year"].isin([t0, t1])]

        collapsed = collapse_person_year(rows, FIELD_REDUCERS).reset_index()
        baseline = self._endpoint(collapsed, t0, "_t0")
        endline = self._endpoint(collapsed, t1, "_t1")

        records = baseline.join(endline, how="inner")
        households = label_max(rows[rows["year"] == t0], "household_id")
        records.insert(0, "household_id", households.reindex(records.index))

        records = self._derive(records)
        records = records.reset_index()

        missing_income = int(records["income_t0"].isna().sum())
        if missing_income:
            self.diagnostics.info(
                "missing_baseline_income",
                f"{missing_income} heads without baseline income keep employment "
                "outcomes; their poverty/vulnerability transitions are missing",
                country=self.country,
                period=period,
                count=missing_income,
            )

        for issue in check_consistency(records):
            self.diagnostics.warn(
                issue.code,
                issue.message,
                country=self.country,
                period=period,
                count=issue.n_rows,
            )

        logger.info(f"Extracted {len(records):,} head transitions for {period}")
        return records

    def _endpoint(self, collapsed: pd.DataFrame, year: int, suffix: str) -> pd.DataFrame:
        endpoint = collapsed[collapsed["year"] == year].drop(columns="year")
        return endpoint.set_index("person_id").add_suffix(suffix)

    def _derive(self, records: pd.DataFrame) -> pd.DataFrame:
        df = records.copy()

        poor_t0, poor_t1 = as_float(df["poor_t0"]), as_float(df["poor_t1"])
        vuln_t0, vuln_t1 = as_float(df["vulnerable_t0"]), as_float(df["vulnerable_t1"])

        df["fell_into_poverty"] = to_flag(poor_t1 == 1, (poor_t0 == 0) & poor_t1.notna())
        df["escaped_poverty"] = to_flag(poor_t1 == 0, (poor_t0 == 1) & poor_t1.notna())
        df["fell_into_vulnerability"] = to_flag(
            vuln_t1 == 1, (vuln_t0 == 0) & vuln_t1.notna()
        )
        df["escaped_vulnerability"] = to_flag(
            vuln_t1 == 0, (vuln_t0 == 1) & vuln_t1.notna()
        )
        df["vulnerable_not_poor_t0"] = to_flag(
            (vuln_t0 == 1) & (poor_t0 == 0), vuln_t0.notna() & poor_t0.notna()
        )

        emp_t0, emp_t1 = as_float(df["employed_t0"]), as_float(df["employed_t1"])
        emp_observed = emp_t0.notna() & emp_t1.notna()
        stayed = (emp_t0 == 1) & (emp_t1 == 1)

        df["entered_job"] = to_flag((emp_t0 == 0) & (emp_t1 == 1), emp_observed)
        df["exited_job"] = to_flag((emp_t0 == 1) & (emp_t1 == 0), emp_observed)
        df["stayed_employed"] = to_flag(stayed, emp_observed)
        df["stayed_not_employed"] = to_flag((emp_t0 == 0) & (emp_t1 == 0), emp_observed)

        skill_t0, skill_t1 = as_float(df["skill_tier_t0"]), as_float(df["skill_tier_t1"])
        skill_defined = emp_observed & (~stayed | (skill_t0.notna() & skill_t1.notna()))

        df["skill_increased"] = to_flag(stayed & (skill_t1 > skill_t0), skill_defined)
        df["skill_decreased"] = to_flag(stayed & (skill_t1 < skill_t0), skill_defined)
        df["same_skill"] = to_flag(stayed & (skill_t1 == skill_t0), skill_defined)

        sector_t0, sector_t1 = as_float(df["sector_t0"]), as_float(df["sector_t1"])
        sector_defined = emp_observed & (~stayed | (sector_t0.notna() & sector_t1.notna()))
        df["changed_sector"] = to_flag(stayed & (sector_t1 != sector_t0), sector_defined)

        transfers_t0 = as_float(df["transfers_t0"])
        transfers_t1 = as_float(df["transfers_t1"])
        always = np.ones(len(df), dtype=bool)
        df["started_transfers"] = to_flag((transfers_t0 == 0) & (transfers_t1 == 1), always)
        df["stopped_transfers"] = to_flag((transfers_t0 == 1) & (transfers_t1 == 0), always)

        return df
