"""
Linear probability models of poverty/vulnerability transitions on
household-head labor-market transitions.

y_i = a + sum_k b_k * LaborTransition_ik + X_i'g + FE + e_i

Four outcomes, each estimated on the baseline population at risk:
- fell_into_poverty         poor_t0 == 0
- escaped_poverty           poor_t0 == 1
- fell_into_vulnerability   vulnerable_t0 == 0
- escaped_vulnerability     vulnerable_t0 == 1 and poor_t0 == 0

Labor transitions (reference category: not employed at either endpoint):
entered_job, exited_job, skill_increased, skill_decreased, same_skill.

Estimation is delegated: statsmodels WLS with fixed-effect dummies and
household-clustered standard errors, or linearmodels PanelOLS with the fixed
effects absorbed.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd
import statsmodels.api as sm
from linearmodels.panel import PanelOLS

from studies.labor_transitions.src.controls import AGE_BAND_DUMMIES
from studies.labor_transitions.src.diagnostics import RunDiagnostics
from studies.labor_transitions.src.indicators import as_float
from studies.labor_transitions.src.transitions import EMPLOYMENT_CATEGORIES

logger = logging.getLogger(__name__)


@dataclass
class OutcomeSpec:
    """A transition outcome and the baseline sample it is defined on."""

    name: str
    label: str
    baseline: dict[str, int]

    def sample(self, data: pd.DataFrame) -> pd.Series:
        """Rows whose baseline status matches every restriction."""
        mask = pd.Series(True, index=data.index)
        for col, value in self.baseline.items():
            mask &= as_float(data[col]) == value
        return mask


OUTCOMES = [
    OutcomeSpec("fell_into_poverty", "Fell into poverty", {"poor_t0": 0}),
    OutcomeSpec("escaped_poverty", "Escaped poverty", {"poor_t0": 1}),
    OutcomeSpec("fell_into_vulnerability", "Fell into vulnerability", {"vulnerable_t0": 0}),
    # Vulnerable encompasses poor: escaping vulnerability is only asked of
    # the vulnerable-but-not-poor
    OutcomeSpec(
        "escaped_vulnerability",
        "Escaped vulnerability",
        {"vulnerable_t0": 1, "poor_t0": 0},
    ),
]

OUTCOMES_BY_NAME = {o.name: o for o in OUTCOMES}

REGRESSORS = list(EMPLOYMENT_CATEGORIES)

DEMOGRAPHIC_CONTROLS = [
    "male_t0",
    *AGE_BAND_DUMMIES,
    "educ_secondary_t0",
    "educ_tertiary_t0",
    "partner_t0",
    "health_shock_t0",
]

HOUSEHOLD_CONTROLS = [
    "household_size_t0",
    "num_children_t0",
    "urban_t0",
]

TRANSFER_CONTROLS = ["started_transfers", "stopped_transfers"]

CONTROL_SETS = {
    "none": [],
    "demographic": DEMOGRAPHIC_CONTROLS,
    "full": DEMOGRAPHIC_CONTROLS + HOUSEHOLD_CONTROLS + TRANSFER_CONTROLS,
}

COUNTRY_FIXED_EFFECTS = ["region_t0", "period_id"]
# period_id counts positions within a country; pooled samples key periods on
# the calendar window so a shared window gets one effect across countries
POOLED_FIXED_EFFECTS = ["country_region", "period_key"]

Z_95 = 1.96


@dataclass
class RegressionSpec:
    """One outcome x control set estimation on one sample."""

    outcome: OutcomeSpec
    control_set: str = "full"
    fixed_effects: list[str] = field(default_factory=lambda: list(COUNTRY_FIXED_EFFECTS))
    weight: str | None = "weight"
    cluster: str = "household_id"
    absorb: bool = False

    def __post_init__(self):
        if self.control_set not in CONTROL_SETS:
            raise ValueError(
                f"Unknown control set '{self.control_set}'. "
                f"Available: {list(CONTROL_SETS)}"
            )

    @property
    def name(self) -> str:
        return f"{self.outcome.name}__{self.control_set}"

    @property
    def controls(self) -> list[str]:
        return CONTROL_SETS[self.control_set]

    @property
    def formula(self) -> str:
        rhs = REGRESSORS + self.controls
        rhs += [f"FE({fe})" for fe in self.fixed_effects]
        return f"{self.outcome.name} ~ {' + '.join(rhs)}"


@dataclass
class TransitionResult:
    """Estimates of one RegressionSpec."""

    spec_name: str
    sample: str
    outcome: str
    control_set: str
    params: pd.Series
    std_errors: pd.Series
    pvalues: pd.Series
    nobs: int
    n_clusters: int
    r2: float
    estimator: str
    formula: str

    def regressor_table(self) -> pd.DataFrame:
        """Long table of the labor-transition coefficients."""
        rows = []
        for var in REGRESSORS:
            if var not in self.params.index:
                continue
            rows.append({
                "sample": self.sample,
                "outcome": self.outcome,
                "control_set": self.control_set,
                "variable": var,
                "coef": float(self.params[var]),
                "std_error": float(self.std_errors[var]),
                "pvalue": float(self.pvalues[var]),
                "nobs": self.nobs,
                "r2": self.r2,
                "estimator": self.estimator,
            })
        return pd.DataFrame(rows)


def independent_columns(matrix: pd.DataFrame) -> list[str]:
    """Columns of matrix, in order, that each add to its column rank."""
    values = matrix.to_numpy(dtype=float)
    gram = values.T @ values

    keep: list[int] = []
    for i in range(values.shape[1]):
        idx = keep + [i]
        if np.linalg.matrix_rank(gram[np.ix_(idx, idx)]) == len(idx):
            keep.append(i)
    return [matrix.columns[i] for i in keep]


def significance_stars(pvalue: float) -> str:
    if pvalue < 0.01:
        return "***"
    if pvalue < 0.05:
        return "**"
    if pvalue < 0.1:
        return "*"
    return ""


class TransitionRegressions:
    """Runs the outcome x control set grid on one sample."""

    def __init__(
        self,
        data: pd.DataFrame,
        sample: str = "pooled",
        fixed_effects: list[str] | None = None,
        weight: str | None = None,
        cluster: str = "household_id",
        absorb: bool = False,
        control_sets: list[str] | None = None,
        diagnostics: RunDiagnostics | None = None,
    ):
        """
        Initialize with an analysis table.

        Args:
            data: Head-period records (one country or pooled)
            sample: Label of the sample, a country code or "pooled"
            fixed_effects: Fixed-effect columns (default depends on the sample)
            weight: Weight column (default: equal_weight when pooled)
            cluster: Column identifying clusters
            absorb: Absorb fixed effects with PanelOLS instead of dummies
            control_sets: Control sets to estimate (default: all)
            diagnostics: Where skipped specifications are recorded
        """
        pooled = "country" in data.columns and data["country"].nunique() > 1
        self.data = data.copy()
        self.sample = sample
        self.fixed_effects = fixed_effects or (
            list(POOLED_FIXED_EFFECTS) if pooled else list(COUNTRY_FIXED_EFFECTS)
        )
        self.weight = weight or ("equal_weight" if pooled else "weight")
        self.cluster = cluster
        self.absorb = absorb
        self.control_sets = control_sets or list(CONTROL_SETS)
        self.diagnostics = diagnostics or RunDiagnostics()
        self.results: dict[str, TransitionResult] = {}

        # Household ids are only unique within a country
        if "country" in self.data.columns:
            self._cluster_key = self.data["country"].astype(str) + "_" + self.data[cluster].astype(str)
        else:
            self._cluster_key = self.data[cluster].astype(str)

    def specs(self) -> list[RegressionSpec]:
        return [
            RegressionSpec(
                outcome=outcome,
                control_set=control_set,
                fixed_effects=self.fixed_effects,
                weight=self.weight,
                cluster=self.cluster,
                absorb=self.absorb,
            )
            for outcome in OUTCOMES
            for control_set in self.control_sets
        ]

    def design_matrix(
        self, spec: RegressionSpec
    ) -> tuple[pd.Series, pd.DataFrame, pd.Series | None, pd.Series, pd.DataFrame]:
        """
        Complete-case design for one specification.

        Returns:
            Tuple of (y, X without constant or FE, weights, cluster keys,
            fixed-effect columns)
        """
        data = self.data[spec.outcome.sample(self.data)]

        columns = REGRESSORS + spec.controls
        needed = columns + [spec.outcome.name] + spec.fixed_effects
        if spec.weight:
            needed.append(spec.weight)
        missing = [c for c in needed if c not in data.columns]
        if missing:
            raise ValueError(f"Columns {missing} not found for {spec.name}")

        y = as_float(data[spec.outcome.name])
        X = data[columns].apply(as_float)
        fe = data[spec.fixed_effects].astype(str)
        w = as_float(data[spec.weight]) if spec.weight else None

        mask = y.notna() & X.notna().all(axis=1)
        if w is not None:
            mask &= w.notna() & (w > 0)

        y, X, fe = y[mask], X[mask], fe[mask]
        w = w[mask] if w is not None else None
        groups = self._cluster_key.loc[y.index]

        if len(y) == 0:
            raise ValueError(f"No observations for {spec.name} after dropping missing values")

        # Regressors or controls with no variation in the sample cannot be estimated
        constant = [c for c in X.columns if X[c].nunique() <= 1]
        if constant:
            logger.debug(f"{self.sample}/{spec.name}: dropping constant columns {constant}")
            X = X.drop(columns=constant)

        return y, X, w, groups, fe

    def fit(self, spec: RegressionSpec) -> TransitionResult:
        """
        Fit one specification.

        Args:
            spec: Regression specification

        Returns:
            TransitionResult with clustered standard errors
        """
        y, X, w, groups, fe = self.design_matrix(spec)

        if spec.absorb:
            result = self._fit_absorbed(y, X, w, groups, fe)
        else:
            result = self._fit_dummies(y, X, w, groups, fe)

        params, std_errors, pvalues, r2, estimator = result
        reg = TransitionResult(
            spec_name=spec.name,
            sample=self.sample,
            outcome=spec.outcome.name,
            control_set=spec.control_set,
            params=params,
            std_errors=std_errors,
            pvalues=pvalues,
            nobs=len(y),
            n_clusters=int(groups.nunique()),
            r2=float(r2),
            estimator=estimator,
            formula=spec.formula,
        )

        self.results[spec.name] = reg
        return reg

    def dummy_design(self, X: pd.DataFrame, fe: pd.DataFrame) -> pd.DataFrame:
        """
        Constant, regressors and fixed-effect dummies.

        Dummies that are linear combinations of the constant and earlier
        dummies (e.g. a period observed in only one country, nested in that
        country's regions) are dropped.
        """
        fixed = pd.DataFrame({"const": 1.0}, index=X.index)
        for col in fe.columns:
            dummies = pd.get_dummies(fe[col], prefix=f"fe_{col}", drop_first=True, dtype=float)
            fixed = pd.concat([fixed, dummies], axis=1)

        kept = independent_columns(fixed)
        redundant = [c for c in fixed.columns if c not in kept]
        if redundant:
            logger.debug(f"{self.sample}: dropping collinear fixed-effect dummies {redundant}")

        return pd.concat([fixed[["const"]], X, fixed[kept[1:]]], axis=1)

    def _fit_dummies(self, y, X, w, groups, fe):
        design = self.dummy_design(X, fe)
        cluster_codes = pd.factorize(groups)[0]

        if w is not None:
            model = sm.WLS(y, design, weights=w)
        else:
            model = sm.OLS(y, design)
        result = model.fit(cov_type="cluster", cov_kwds={"groups": cluster_codes})

        keep = [c for c in result.params.index if not c.startswith("fe_")]
        estimator = "WLS" if w is not None else "OLS"
        return (
            result.params[keep],
            result.bse[keep],
            result.pvalues[keep],
            result.rsquared,
            estimator,
        )

    def _fit_absorbed(self, y, X, w, groups, fe):
        # PanelOLS needs a 2-level index; effects come from other_effects only
        index = pd.MultiIndex.from_arrays(
            [np.arange(len(y)), np.zeros(len(y), dtype=int)],
            names=["obs", "time"],
        )
        effects = pd.DataFrame(
            {col: pd.factorize(fe[col])[0] for col in fe.columns}, index=index
        )
        clusters = pd.DataFrame({"cluster": pd.factorize(groups)[0]}, index=index)

        exog = sm.add_constant(X, has_constant="add").set_axis(index)
        model = PanelOLS(
            y.set_axis(index),
            exog,
            weights=w.set_axis(index) if w is not None else None,
            other_effects=effects if len(effects.columns) else None,
            drop_absorbed=True,
        )
        result = model.fit(cov_type="clustered", clusters=clusters)

        return (
            result.params,
            result.std_errors,
            result.pvalues,
            result.rsquared,
            "PanelOLS",
        )

    def fit_all(self) -> dict[str, TransitionResult]:
        """Fit every outcome x control set; specifications without data are skipped and recorded."""
        for spec in self.specs():
            try:
                self.fit(spec)
            except ValueError as e:
                self.diagnostics.warn(
                    "regression_skipped",
                    f"{spec.name}: {e}",
                    country=None if self.sample == "pooled" else self.sample,
                )
        logger.info(f"Estimated {len(self.results)} specifications for {self.sample}")
        return self.results

    def coefficient_table(self) -> pd.DataFrame:
        """Long table: one row per sample x outcome x control set x regressor."""
        tables = [res.regressor_table() for res in self.results.values()]
        if not tables:
            return pd.DataFrame(
                columns=[
                    "sample", "outcome", "control_set", "variable", "coef",
                    "std_error", "pvalue", "nobs", "r2", "estimator",
                ]
            )
        return pd.concat(tables, ignore_index=True)

    def formatted_table(self) -> pd.DataFrame:
        """
        Publication-style table: coefficient with stars over the standard
        error in parentheses, one column per outcome x control set.
        """
        columns: dict[str, list[str]] = {}
        index = []
        for var in REGRESSORS:
            index += [(var, "coef"), (var, "se")]
        index += [("N", ""), ("R2", "")]

        for name, res in self.results.items():
            cells = []
            for var in REGRESSORS:
                if var in res.params.index:
                    cells.append(f"{res.params[var]:.3f}{significance_stars(res.pvalues[var])}")
                    cells.append(f"({res.std_errors[var]:.3f})")
                else:
                    cells += ["", ""]
            cells += [f"{res.nobs:,}", f"{res.r2:.3f}"]
            columns[name] = cells

        return pd.DataFrame(columns, index=pd.MultiIndex.from_tuples(index, names=["variable", "stat"]))

    def graph_data(self) -> pd.DataFrame:
        """Coefficients, standard errors and 95% intervals in percentage points."""
        table = self.coefficient_table()
        graph = table[["sample", "outcome", "control_set", "variable"]].copy()
        graph["coef"] = table["coef"] * 100
        graph["std_error"] = table["std_error"] * 100
        graph["ci_lower"] = graph["coef"] - Z_95 * graph["std_error"]
        graph["ci_upper"] = graph["coef"] + Z_95 * graph["std_error"]
        return graph

    def summary(self, spec_name: str | None = None) -> str:
        """Text summary of the estimated specifications."""
        if spec_name:
            results = {spec_name: self.results[spec_name]}
        else:
            results = self.results

        lines = []
        for name, res in results.items():
            lines.append(f"\n{'=' * 70}")
            lines.append(f"Sample: {res.sample}  Specification: {name}")
            lines.append(f"{'=' * 70}")
            lines.append(f"Formula: {res.formula}")
            lines.append(f"N obs: {res.nobs:,}  Clusters: {res.n_clusters:,}")
            lines.append(f"R²: {res.r2:.4f}  Estimator: {res.estimator}")
            lines.append(f"\n{'Coefficient':<30} {'Estimate':>12} {'Std.Err':>12} {'p-value':>12}")
            lines.append("-" * 70)

            for var in REGRESSORS:
                if var not in res.params.index:
                    continue
                coef, se, pval = res.params[var], res.std_errors[var], res.pvalues[var]
                lines.append(
                    f"{var:<30} {coef:>12.4f} {se:>12.4f} {pval:>10.4f}{significance_stars(pval)}"
                )

        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            name: {
                "nobs": res.nobs,
                "r2": res.r2,
                "params": res.params.to_dict(),
            }
            for name, res in self.results.items()
        }
