"""
Labor transitions pipeline.

Coordinates loading, cohort selection, transition extraction, period and
country pooling, estimation and export. Countries are processed one at a
time and their intermediate frames stay separate until country pooling.
Fatal conditions (PipelineError) halt the whole run.
"""

import logging
from pathlib import Path

import pandas as pd

from config.settings import Settings, get_settings
from studies.labor_transitions.src.cohort_filter import CohortFilter, CohortSelection
from studies.labor_transitions.src.country_pooler import CountryPooler, outcome_sample_sizes
from studies.labor_transitions.src.country_schema import CountrySpec, load_country_specs
from studies.labor_transitions.src.diagnostics import PipelineError, RunDiagnostics
from studies.labor_transitions.src.export import TransitionExporter
from studies.labor_transitions.src.indicators import add_indicators
from studies.labor_transitions.src.panel_loader import PanelLoader
from studies.labor_transitions.src.period_pooler import PeriodPooler
from studies.labor_transitions.src.regressions import (
    COUNTRY_FIXED_EFFECTS,
    TransitionRegressions,
)

logger = logging.getLogger(__name__)

POOLED_SAMPLE = "pooled"


class TransitionPipeline:
    """End-to-end construction of the head transition panel."""

    def __init__(
        self,
        settings: Settings | None = None,
        specs: dict[str, CountrySpec] | None = None,
        diagnostics: RunDiagnostics | None = None,
    ):
        self.settings = settings or get_settings()
        self.diagnostics = diagnostics or RunDiagnostics()
        self.specs = specs or load_country_specs(
            self.settings.resolve(self.settings.countries_config)
        )
        self.loader = PanelLoader(self.settings, self.diagnostics)

        self.country_tables: dict[str, pd.DataFrame] = {}
        self.selections: dict[str, CohortSelection] = {}
        self.pooled: pd.DataFrame | None = None
        self.sample_sizes: pd.DataFrame | None = None
        self.regressions: dict[str, TransitionRegressions] = {}

    def spec(self, code: str) -> CountrySpec:
        if code not in self.specs:
            raise PipelineError(
                f"Unknown country. Configured: {list(self.specs)}",
                country=code,
            )
        return self.specs[code]

    def build_country(self, code: str, raw: pd.DataFrame | None = None) -> pd.DataFrame:
        """
        Build one country's period-pooled head transition table.

        Args:
            code: Country code from the country table
            raw: Raw extract to use instead of reading the configured file

        Returns:
            DataFrame with one row per eligible head per retained period
        """
        spec = self.spec(code)
        logger.info(f"Building transitions for {spec.name} ({code})")

        panel = self.loader.load(spec) if raw is None else self.loader.normalize(raw, spec)
        panel = add_indicators(panel, self.settings, employed_code=spec.employed_code)

        cohort = CohortFilter(self.settings, self.diagnostics, country=code)
        selection = cohort.select(panel, spec.periods)

        records = PeriodPooler(cohort, self.diagnostics, country=code).pool(panel, selection)

        self.selections[code] = selection
        self.country_tables[code] = records
        return records

    def build_all(self, codes: list[str] | None = None) -> dict[str, pd.DataFrame]:
        """Build every configured country (or the given subset), in order."""
        for code in codes or list(self.specs):
            self.build_country(code)
        return self.country_tables

    def pool(self) -> pd.DataFrame:
        """Pool the built country tables into the cross-country analysis table."""
        if not self.country_tables:
            self.build_all()

        missing = {code: self.specs[code].missing_covariates for code in self.country_tables}
        self.pooled = CountryPooler(self.diagnostics).pool(self.country_tables, missing)
        self.sample_sizes = outcome_sample_sizes(self.pooled)

        empty = self.sample_sizes[self.sample_sizes["n_obs"] == 0]
        for row in empty.itertuples():
            self.diagnostics.warn(
                "empty_outcome_sample",
                f"No complete observations for {row.outcome}",
                country=row.country,
            )

        return self.pooled

    def estimate(
        self,
        absorb: bool = False,
        control_sets: list[str] | None = None,
    ) -> dict[str, TransitionRegressions]:
        """
        Estimate every outcome x control set per country and on the pooled table.

        Args:
            absorb: Absorb fixed effects (PanelOLS) instead of dummies (WLS)
            control_sets: Control sets to estimate (default: all)

        Returns:
            Sample label -> fitted TransitionRegressions
        """
        if self.pooled is None:
            self.pool()

        for code, table in self.pooled.groupby("country", sort=False):
            regs = TransitionRegressions(
                table,
                sample=code,
                fixed_effects=list(COUNTRY_FIXED_EFFECTS),
                weight="weight",
                absorb=absorb,
                control_sets=control_sets,
                diagnostics=self.diagnostics,
            )
            regs.fit_all()
            self.regressions[code] = regs

        if self.pooled["country"].nunique() > 1:
            regs = TransitionRegressions(
                self.pooled,
                sample=POOLED_SAMPLE,
                absorb=absorb,
                control_sets=control_sets,
                diagnostics=self.diagnostics,
            )
            regs.fit_all()
            self.regressions[POOLED_SAMPLE] = regs

        return self.regressions

    def save(self, output_dir: Path | None = None) -> list[Path]:
        """Write every output built so far, plus the diagnostics."""
        exporter = TransitionExporter(self.settings, output_dir)

        paths = []
        for code, records in self.country_tables.items():
            paths += exporter.write_country(code, records)
        if self.pooled is not None:
            paths += exporter.write_pooled(self.pooled, self.sample_sizes)
        for regs in self.regressions.values():
            paths += exporter.write_estimates(regs)
        paths += exporter.write_diagnostics(self.diagnostics)

        return paths

    def run(
        self,
        codes: list[str] | None = None,
        absorb: bool = False,
        save: bool = True,
    ) -> pd.DataFrame:
        """Build, pool, estimate and (optionally) save."""
        self.build_all(codes)
        self.pool()
        self.estimate(absorb=absorb)

        if save:
            self.save()

        if self.diagnostics.has_warnings():
            logger.info(f"Run finished with {len(self.diagnostics.get_warnings())} warning(s)")
        else:
            logger.info("Run finished cleanly")
        return self.pooled
