"""
Tests for head eligibility and the pooled/single-period decision.
"""

import pytest
import pandas as pd

from config.settings import Settings
from studies.labor_transitions.src.cohort_filter import (
    POOLED,
    SINGLE,
    SINGLE_PERIOD_ID,
    CohortFilter,
)
from studies.labor_transitions.src.diagnostics import NoAnalyzablePanelError, RunDiagnostics
from tests.fixtures.synthetic_panel import make_cohort, make_panel, person_year

PERIODS = [(2021, 2022), (2022, 2023)]


class TestValidRows:
    """Head, cohabitation and age restrictions."""

    @pytest.fixture
    def cohort(self):
        return CohortFilter(Settings(), RunDiagnostics(), country="tst")

    def test_non_head_in_any_year_is_excluded(self, cohort):
        panel = make_panel([
            person_year("a", 2021),
            person_year("a", 2022, is_head=0),
            person_year("b", 2021),
            person_year("b", 2022),
        ])

        valid = cohort.valid_rows(panel)

        assert set(valid["person_id"]) == {"b"}

    def test_invalid_cohabitation_flag(self, cohort):
        panel = make_panel([
            person_year("a", 2021, cohabiting_head_flag=0),
            person_year("a", 2022),
        ])

        valid = cohort.valid_rows(panel)
        heads = cohort.eligible_heads(valid, 2021, 2022)

        assert len(valid) == 1
        assert list(heads) == []

    def test_age_must_exceed_minimum(self, cohort):
        panel = make_panel([
            person_year("a", 2021, age=15),
            person_year("b", 2021, age=16),
        ])

        valid = cohort.valid_rows(panel)

        assert list(valid["person_id"]) == ["b"]


class TestPeriodDecision:
    """Pooled design, fallbacks and the fatal empty case."""

    @pytest.fixture
    def diagnostics(self):
        return RunDiagnostics()

    @pytest.fixture
    def cohort(self, diagnostics):
        return CohortFilter(Settings(), diagnostics, country="tst")

    def test_pooled_when_both_periods_large(self, cohort, diagnostics):
        panel = make_cohort(150, [2021, 2022, 2023])

        selection = cohort.select(panel, PERIODS)

        assert selection.design == POOLED
        assert selection.is_pooled
        assert [p.period_id for p in selection.periods] == [1, 2]
        assert [p.n_heads for p in selection.periods] == [150, 150]
        assert len(diagnostics.by_code("design")) == 1
        assert not diagnostics.has_warnings()

    def test_heads_eligible_for_overlapping_periods(self, cohort):
        panel = make_cohort(150, [2021, 2022, 2023])

        selection = cohort.select(panel, PERIODS)
        first, second = selection.periods

        assert list(selection.heads(first)) == list(selection.heads(second))

    def test_small_single_period_is_retained(self, cohort, diagnostics):
        panel = make_cohort(80, [2021, 2022])

        selection = cohort.select(panel, [(2021, 2022)])

        assert selection.design == SINGLE
        assert len(selection.periods) == 1
        assert selection.periods[0].n_heads == 80
        assert selection.periods[0].period_id == SINGLE_PERIOD_ID
        assert len(diagnostics.by_code("small_single_period")) == 1

    def test_fallback_when_one_period_is_small(self, cohort, diagnostics):
        panel = pd.concat([
            make_cohort(80, [2021, 2022], prefix="a", seed=1),
            make_cohort(150, [2022, 2023], prefix="b", seed=2),
        ], ignore_index=True)

        selection = cohort.select(panel, PERIODS)

        assert selection.design == SINGLE
        assert [p.label for p in selection.periods] == ["2022-2023"]
        assert selection.periods[0].period_id == SINGLE_PERIOD_ID
        assert [p.label for p in selection.excluded] == ["2021-2022"]
        assert len(diagnostics.by_code("period_fallback")) == 1

    def test_fallback_to_largest_when_all_small(self, cohort, diagnostics):
        panel = pd.concat([
            make_cohort(50, [2021, 2022], prefix="a", seed=1),
            make_cohort(80, [2022, 2023], prefix="b", seed=2),
        ], ignore_index=True)

        selection = cohort.select(panel, PERIODS)

        assert selection.design == SINGLE
        assert [p.label for p in selection.periods] == ["2022-2023"]
        assert selection.periods[0].n_heads == 80
        assert len(diagnostics.by_code("period_fallback")) == 1

    def test_zero_eligible_heads_is_fatal(self, cohort):
        panel = make_cohort(20, [2021])

        with pytest.raises(NoAnalyzablePanelError) as exc:
            cohort.select(panel, PERIODS)

        assert exc.value.country == "tst"
        assert "CRITICAL" in str(exc.value)

    def test_min_period_heads_is_configurable(self, diagnostics):
        cohort = CohortFilter(Settings(min_period_heads=50), diagnostics, country="tst")
        panel = make_cohort(60, [2021, 2022, 2023])

        selection = cohort.select(panel, PERIODS)

        assert selection.design == POOLED


class TestSlice:
    """Endpoint rows of the eligible heads."""

    def test_slice_keeps_endpoint_years_of_eligible_heads(self):
        cohort = CohortFilter(Settings(min_period_heads=1), RunDiagnostics(), country="tst")
        panel = make_panel([
            person_year("a", 2021),
            person_year("a", 2022),
            person_year("a", 2023),
            person_year("b", 2022),
            person_year("b", 2023),
        ])

        selection = cohort.select(panel, PERIODS)
        first, second = selection.periods
        rows = cohort.slice(panel, selection, first)

        assert set(rows["person_id"]) == {"a"}
        assert sorted(rows["year"]) == [2021, 2022]
        assert set(cohort.slice(panel, selection, second)["person_id"]) == {"a", "b"}
