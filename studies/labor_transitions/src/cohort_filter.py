"""
Cohort filter and period eligibility.

Restricts the person-year panel to household heads that can be followed
across a period and decides, once per country, whether the analysis uses a
pooled two-period design or falls back to a single period.

Eligibility for a period (t0, t1):
- the person is a household head in every year they appear;
- their cohabitation flag is valid (== 1) in both t0 and t1;
- they are strictly older than the minimum age;
- they have rows in both t0 and t1.

Design decision:
- no candidate period with any eligible head -> NoAnalyzablePanelError;
- a single candidate period with heads is kept even below the minimum size;
- with several candidates, periods below the minimum size are excluded; if
  only one period survives (or none does, in which case the largest is
  taken) the country falls back to a single-period design.
"""

import logging
from dataclasses import dataclass, field

import pandas as pd

from config.settings import Settings, get_settings
from studies.labor_transitions.src.diagnostics import NoAnalyzablePanelError, RunDiagnostics
from studies.labor_transitions.src.indicators import as_float, is_one

logger = logging.getLogger(__name__)

POOLED = "pooled"
SINGLE = "single"

# period_id of the only period in a single-period design
SINGLE_PERIOD_ID = 0


@dataclass
class Period:
    """A baseline/endline pair and its eligible head count."""

    t0: int
    t1: int
    n_heads: int = 0
    period_id: int = SINGLE_PERIOD_ID

    @property
    def label(self) -> str:
        return f"{self.t0}-{self.t1}"


@dataclass
class CohortSelection:
    """Outcome of the period eligibility decision for one country."""

    design: str
    periods: list[Period]
    excluded: list[Period] = field(default_factory=list)
    eligible: dict[str, pd.Index] = field(default_factory=dict)
    country: str | None = None

    @property
    def is_pooled(self) -> bool:
        return self.design == POOLED

    def heads(self, period: Period) -> pd.Index:
        return self.eligible[period.label]

    def summary(self) -> str:
        kept = ", ".join(f"{p.label} (id={p.period_id}, n={p.n_heads})" for p in self.periods)
        text = f"{self.design} design: {kept}"
        if self.excluded:
            dropped = ", ".join(f"{p.label} (n={p.n_heads})" for p in self.excluded)
            text += f"; excluded: {dropped}"
        return text


class CohortFilter:
    """Selects eligible household heads and analyzable periods."""

    def __init__(
        self,
        settings: Settings | None = None,
        diagnostics: RunDiagnostics | None = None,
        country: str | None = None,
    ):
        self.settings = settings or get_settings()
        self.diagnostics = diagnostics or RunDiagnostics()
        self.country = country

    def valid_rows(self, panel: pd.DataFrame) -> pd.DataFrame:
        """Person-years of persons who are always heads, cohabiting and above the minimum age."""
        head = pd.Series(is_one(panel["is_head"]), index=panel.index)
        always_head = head.groupby(panel["person_id"]).transform("all").astype(bool)

        cohabiting = is_one(panel["cohabiting_head_flag"])
        old_enough = (as_float(panel["age"]) > self.settings.min_age).to_numpy()

        keep = always_head.to_numpy() & cohabiting & old_enough
        return panel[keep]

    def eligible_heads(self, valid: pd.DataFrame, t0: int, t1: int) -> pd.Index:
        """Persons with valid rows in both endpoint years."""
        in_t0 = pd.Index(valid.loc[valid["year"] == t0, "person_id"].unique())
        in_t1 = pd.Index(valid.loc[valid["year"] == t1, "person_id"].unique())
        return in_t0.intersection(in_t1).sort_values()

    def select(
        self,
        panel: pd.DataFrame,
        periods: list[tuple[int, int]],
    ) -> CohortSelection:
        """
        Decide the analysis design for a country.

        Args:
            panel: Canonical person-year panel
            periods: Candidate (t0, t1) pairs, in preference order

        Returns:
            CohortSelection with retained periods and their eligible heads

        Raises:
            NoAnalyzablePanelError: if no candidate period has eligible heads
        """
        valid = self.valid_rows(panel)
        min_heads = self.settings.min_period_heads

        eligible = {}
        considered = []
        for t0, t1 in periods:
            heads = self.eligible_heads(valid, t0, t1)
            period = Period(t0=t0, t1=t1, n_heads=len(heads))
            eligible[period.label] = heads
            considered.append(period)
            logger.info(f"Period {period.label}: {period.n_heads} eligible heads")

        candidates = [p for p in considered if p.n_heads > 0]

        if not candidates:
            raise NoAnalyzablePanelError(
                f"No analyzable panel: none of the candidate periods "
                f"{[f'{t0}-{t1}' for t0, t1 in periods]} has an eligible household head",
                country=self.country,
            )

        excluded = [p for p in considered if p.n_heads == 0]

        if len(candidates) == 1:
            retained = candidates
            if retained[0].n_heads < min_heads:
                self.diagnostics.warn(
                    "small_single_period",
                    f"Only period {retained[0].label} is available; kept as a "
                    f"single-period design with {retained[0].n_heads} heads "
                    f"(below the minimum of {min_heads})",
                    country=self.country,
                    period=retained[0].label,
                    count=retained[0].n_heads,
                )
        else:
            retained = [p for p in candidates if p.n_heads >= min_heads]
            excluded += [p for p in candidates if p.n_heads < min_heads]

            if not retained:
                largest = max(candidates, key=lambda p: p.n_heads)
                retained = [largest]
                excluded = [p for p in excluded if p.label != largest.label]
                self.diagnostics.warn(
                    "period_fallback",
                    f"All candidate periods are below {min_heads} heads; "
                    f"falling back to the largest, {largest.label} ({largest.n_heads} heads)",
                    country=self.country,
                    period=largest.label,
                    count=largest.n_heads,
                )
            elif len(retained) == 1:
                dropped = [p for p in candidates if p.n_heads < min_heads]
                self.diagnostics.warn(
                    "period_fallback",
                    f"Excluded {[f'{p.label} ({p.n_heads} heads)' for p in dropped]} "
                    f"below {min_heads} heads; falling back to single period "
                    f"{retained[0].label}",
                    country=self.country,
                    period=retained[0].label,
                    count=retained[0].n_heads,
                )

        design = POOLED if len(retained) > 1 else SINGLE
        for i, period in enumerate(retained, start=1):
            period.period_id = i if design == POOLED else SINGLE_PERIOD_ID

        selection = CohortSelection(
            design=design,
            periods=retained,
            excluded=excluded,
            eligible={p.label: eligible[p.label] for p in retained},
            country=self.country,
        )

        self.diagnostics.info("design", selection.summary(), country=self.country)
        return selection

    def slice(self, panel: pd.DataFrame, selection: CohortSelection, period: Period) -> pd.DataFrame:
        """Endpoint person-years of the heads eligible for a period."""
        valid = self.valid_rows(panel)
        heads = selection.heads(period)
        mask = valid["person_id"].isin(heads) & valid["year"].isin([period.t0, period.t1])
        return valid[mask]

